from __future__ import annotations

import logging
import math

import numpy as np

from src.models import NEUTRAL_SCORE, PixelBuffer

logger = logging.getLogger(__name__)

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)
GRID_SIZE = 3


def pixel_grid(buffer: PixelBuffer | None, *, scorer: str) -> np.ndarray | None:
    """Return complete rows as an ``int16`` ``(rows, width, 4)`` array, or None when degenerate."""

    if buffer is None or buffer.is_degenerate:
        logger.warning(
            "%s received a degenerate pixel buffer (%sx%s); returning neutral score.",
            scorer,
            getattr(buffer, "width", 0),
            getattr(buffer, "height", 0),
        )
        return None
    return buffer.as_array().astype(np.int16)


def luminance(pixels: np.ndarray) -> np.ndarray:
    return pixels[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def quantized_keys(pixels: np.ndarray, step: int) -> np.ndarray:
    """Collapse RGB into one integer key per pixel after ``step``-wide bucketing."""

    levels = 256 // step
    buckets = pixels[..., :3].astype(np.int32) // step
    return (buckets[..., 0] * levels + buckets[..., 1]) * levels + buckets[..., 2]


def entropy(counts: np.ndarray, total: float | None = None, base: float = 2.0) -> float:
    counts = counts[counts > 0].astype(np.float64)
    if counts.size == 0:
        return 0.0
    denominator = float(total) if total else float(counts.sum())
    probabilities = counts / denominator
    return float(-(probabilities * (np.log(probabilities) / math.log(base))).sum())


def grid_cells(ys: np.ndarray, xs: np.ndarray, height: int, width: int) -> np.ndarray:
    """Map sample coordinates to a flattened 3x3 cell index (row-major)."""

    grid_y = np.minimum(GRID_SIZE - 1, (ys * GRID_SIZE) // height)
    grid_x = np.minimum(GRID_SIZE - 1, (xs * GRID_SIZE) // width)
    return (grid_y[:, None] * GRID_SIZE + grid_x[None, :]).reshape(-1)


def grid_edge_ratios(lum: np.ndarray, stride: int, threshold: float) -> tuple[np.ndarray, np.ndarray]:
    """Per-cell edge hits and sample counts on a 3x3 grid.

    A sample is an edge when its luminance differs from the left or top
    neighbour by more than ``threshold``; the first row and column only count
    as samples.
    """

    height, width = lum.shape
    ys = np.arange(0, height, stride)
    xs = np.arange(0, width, stride)
    center = lum[np.ix_(ys, xs)]
    left = lum[np.ix_(ys, np.maximum(xs - 1, 0))]
    top = lum[np.ix_(np.maximum(ys - 1, 0), xs)]

    edges = (np.abs(center - left) > threshold) | (np.abs(center - top) > threshold)
    edges &= (ys > 0)[:, None] & (xs > 0)[None, :]

    cells = grid_cells(ys, xs, height, width)
    hits = np.bincount(cells, weights=edges.reshape(-1).astype(np.float64), minlength=GRID_SIZE**2)
    samples = np.bincount(cells, minlength=GRID_SIZE**2).astype(np.float64)
    return hits, samples


def unit_score(value: float) -> float:
    """Clamp to ``[0, 1]``; non-finite values collapse to the neutral score."""

    if not math.isfinite(value):
        return NEUTRAL_SCORE
    return _clamp(value)


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
