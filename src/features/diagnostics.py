from __future__ import annotations

import numpy as np

from src.features.pixels import entropy, luminance, pixel_grid, quantized_keys
from src.models import FrameDiagnostics, PixelBuffer

EDGE_DELTA = 30.0
COLOR_STEP = 32
DOMINANT_COLORS = 5


def edge_map(buffer: PixelBuffer, sample_rate: int = 2) -> np.ndarray:
    """Binary edge map at ``sample_rate`` resolution; 255 marks an edge, 0 otherwise.

    A sample is an edge when its luminance differs by more than 30 from the
    sample ``sample_rate`` pixels to the right or below it.
    """

    stride = max(1, int(sample_rate))
    shape = (-(-buffer.height // stride), -(-buffer.width // stride)) if buffer.width > 0 else (0, 0)
    result = np.zeros(shape, dtype=np.uint8)
    pixels = pixel_grid(buffer, scorer="edge_map")
    if pixels is None:
        return result

    lum = luminance(pixels)
    sampled = lum[::stride, ::stride]
    edges = np.zeros(sampled.shape, dtype=bool)
    # neighbours must exist in the full-resolution frame
    edges[:, :-1] |= np.abs(sampled[:, 1:] - sampled[:, :-1]) > EDGE_DELTA
    edges[:-1, :] |= np.abs(sampled[1:, :] - sampled[:-1, :]) > EDGE_DELTA
    result[: sampled.shape[0], : sampled.shape[1]] = np.where(edges, 255, 0)
    return result


def color_profile(buffer: PixelBuffer, sample_rate: int = 4) -> tuple[list[float], float]:
    """Shares of the five most common 32-level colours and a normalized colour entropy."""

    pixels = pixel_grid(buffer, scorer="color_profile")
    if pixels is None:
        return [], 0.0

    flat = pixels.reshape(-1, 4)[:: max(1, int(sample_rate))]
    counts = np.bincount(quantized_keys(flat, COLOR_STEP))
    total = float(counts.sum())
    if total == 0:
        return [], 0.0
    ranked = np.sort(counts[counts > 0])[::-1]
    dominant = [float(count) / total for count in ranked[:DOMINANT_COLORS]]
    return dominant, min(1.0, entropy(counts) / 3.0)


def frame_diagnostics(buffer: PixelBuffer, sample_rate: int = 2) -> FrameDiagnostics:
    dominant, variety = color_profile(buffer, sample_rate)
    return FrameDiagnostics(edge_map=edge_map(buffer, sample_rate), dominant_colors=dominant, color_variety=variety)
