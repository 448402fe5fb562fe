from __future__ import annotations

import numpy as np

from src.features.pixels import GRID_SIZE, entropy, grid_edge_ratios, luminance, pixel_grid, quantized_keys, unit_score
from src.models import NEUTRAL_SCORE, PixelBuffer

EDGE_DELTA = 25.0
GRID_EDGE_DELTA = 20.0
COLOR_STEP = 32
CENTER_CELL = (GRID_SIZE * GRID_SIZE) // 2


def static_score(buffer: PixelBuffer, sample_rate: int = 1) -> float:
    """Score how still and well-composed a frame looks.

    Low horizontal edge density, moderate colour diversity and evenly spread
    content all raise the score. Frames without any local structure are judged
    on stillness alone.
    """

    pixels = pixel_grid(buffer, scorer="static_score")
    if pixels is None:
        return NEUTRAL_SCORE

    stride = max(1, int(sample_rate))
    lum = luminance(pixels)

    edge_density = _edge_density(lum, stride)
    color_diversity = _color_diversity(pixels, stride)

    hits, samples = grid_edge_ratios(lum, stride * 2, GRID_EDGE_DELTA)
    populated = samples > 0
    cell_ratios = hits[populated] / samples[populated]
    if cell_ratios.size == 0:
        return unit_score(1.0 - edge_density * 10.0)

    average = float(cell_ratios.mean())
    if average <= 0.0:
        return unit_score(1.0 - edge_density * 10.0)

    center = float(hits[CENTER_CELL] / samples[CENTER_CELL]) if samples[CENTER_CELL] > 0 else 0.0
    spread = float(np.sqrt(((cell_ratios - average) ** 2).mean()))
    uniformity = max(0.0, 1.0 - spread / average)
    content_richness = (average * 0.6 + center * 0.4) * 5.0

    score = (
        (1.0 - edge_density * 8.0) * 0.5
        + color_diversity * 0.2
        + content_richness * 0.2
        + uniformity * 0.1
    )
    return unit_score(score)


def _edge_density(lum: np.ndarray, stride: int) -> float:
    sampled = lum[::stride, ::stride]
    if sampled.size == 0:
        return 0.0
    edges = int((np.abs(np.diff(sampled, axis=1)) > EDGE_DELTA).sum())
    return edges / sampled.size


def _color_diversity(pixels: np.ndarray, stride: int) -> float:
    flat = pixels.reshape(-1, 4)[:: stride * 2]
    keys = quantized_keys(flat, COLOR_STEP)
    counts = np.bincount(keys.reshape(-1))
    return min(1.0, entropy(counts) / 3.0)
