from __future__ import annotations

import numpy as np

from src.features.pixels import GRID_SIZE, grid_cells, pixel_grid, unit_score
from src.models import NEUTRAL_SCORE, PixelBuffer

CENTER_WEIGHT = 1.5
FACE_THRESHOLD = 0.4
SKIN_RATIO_GAIN = 5.0
EMPHASIS_EXPONENT = 0.8


def skin_mask(pixels: np.ndarray) -> np.ndarray:
    """Boolean mask of skin-toned pixels under either the RGB or the YCbCr rule."""

    red = pixels[..., 0].astype(np.float64)
    green = pixels[..., 1].astype(np.float64)
    blue = pixels[..., 2].astype(np.float64)

    rgb_rule = (
        (red > 95)
        & (green > 40)
        & (blue > 20)
        & (red > green)
        & (red > blue)
        & (red - green > 15)
        & (red - blue > 15)
    )

    luma = 0.299 * red + 0.587 * green + 0.114 * blue
    cb = 128 - 0.168736 * red - 0.331264 * green + 0.5 * blue
    cr = 128 + 0.5 * red - 0.418688 * green - 0.081312 * blue
    ycbcr_rule = (luma > 80) & (cb > 85) & (cb < 135) & (cr > 135) & (cr < 180)

    return rgb_rule | ycbcr_rule


def people_score(buffer: PixelBuffer, sample_rate: int = 4) -> float:
    """Likelihood that people (faces in particular) dominate the frame.

    Skin pixels are tallied on a 3x3 grid; a centred, top-heavy and
    left/right balanced layout is read as a face and can lift the plain
    skin-ratio score. A ``^0.8`` curve emphasises strong detections.
    """

    pixels = pixel_grid(buffer, scorer="people_score")
    if pixels is None:
        return NEUTRAL_SCORE

    stride = max(1, int(sample_rate))
    height, width = pixels.shape[:2]
    ys = np.arange(0, height, stride)
    xs = np.arange(0, width, stride)
    sampled = pixels[np.ix_(ys, xs)]
    skin = skin_mask(sampled).reshape(-1)

    cells = grid_cells(ys, xs, height, width)
    skin_counts = np.bincount(cells, weights=skin.astype(np.float64), minlength=GRID_SIZE**2).reshape(
        GRID_SIZE, GRID_SIZE
    )
    sample_counts = np.bincount(cells, minlength=GRID_SIZE**2).astype(np.float64).reshape(GRID_SIZE, GRID_SIZE)

    base = min(1.0, float(skin.mean()) * SKIN_RATIO_GAIN)
    face = _face_likelihood(skin_counts, sample_counts)
    score = max(base, face) if face > FACE_THRESHOLD else base
    return unit_score(score**EMPHASIS_EXPONENT)


def _face_likelihood(skin_counts: np.ndarray, sample_counts: np.ndarray) -> float:
    ratios = np.divide(skin_counts, sample_counts, out=np.zeros_like(skin_counts), where=sample_counts > 0)

    center = GRID_SIZE // 2
    rows, cols = np.mgrid[0:GRID_SIZE, 0:GRID_SIZE]
    distance = np.sqrt((rows - center) ** 2 + (cols - center) ** 2)
    weights = 1.0 / (1.0 + distance) * np.where(distance < 1, CENTER_WEIGHT, 1.0)
    region = float((ratios * weights).sum() / weights.sum())

    top_half = _share(skin_counts[:2].sum(), sample_counts[:2].sum())
    center_ratio = float(ratios[center, center])
    left = _share(skin_counts[:, 0].sum(), sample_counts[:, 0].sum())
    right = _share(skin_counts[:, -1].sum(), sample_counts[:, -1].sum())
    symmetry = 1.0 - min(1.0, abs(left - right) * 3.0)

    return region * 0.4 + center_ratio * 0.3 + top_half * 0.2 + symmetry * 0.1


def _share(hits: float, samples: float) -> float:
    return float(hits) / float(samples or 1)
