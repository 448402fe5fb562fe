from __future__ import annotations

import math

import numpy as np

from src.features.pixels import entropy, grid_edge_ratios, luminance, pixel_grid, quantized_keys, unit_score
from src.models import NEUTRAL_SCORE, PixelBuffer

COLOR_STEP = 16
EDGE_DELTA = 20.0
BRIGHTNESS_BINS = 10
SHARPNESS_SCALE = 50.0


def empty_frame_score(buffer: PixelBuffer, sample_rate: int = 2) -> float:
    """Likelihood that the frame is an empty shot, flat background or transition.

    Few colours, one dominant colour, few edges, unevenly placed content, a
    narrow brightness histogram, blur and smooth linear gradients all raise
    the score.
    """

    pixels = pixel_grid(buffer, scorer="empty_frame_score")
    if pixels is None:
        return NEUTRAL_SCORE

    stride = max(1, int(sample_rate))
    lum = luminance(pixels)

    color_diversity, dominant_ratio = _color_statistics(pixels, stride)
    edge_density = _edge_density(lum, stride)
    distribution = _content_unevenness(lum, stride)
    brightness_spread = _brightness_entropy(pixels, stride)
    sharpness = _sharpness(lum, stride)
    gradient = _gradient_linearity(lum, stride * 2)

    score = (
        (1.0 - color_diversity) * 0.25
        + dominant_ratio * 0.25
        + (1.0 - edge_density) * 0.2
        + distribution * 0.1
        + (1.0 - brightness_spread) * 0.1
        + (1.0 - sharpness) * 0.05
        + gradient * 0.05
    )
    return unit_score(score)


def _color_statistics(pixels: np.ndarray, stride: int) -> tuple[float, float]:
    sampled = pixels[::stride, ::stride]
    counts = np.bincount(quantized_keys(sampled, COLOR_STEP).reshape(-1))
    total = float(counts.sum())
    if total == 0:
        return 0.0, 0.0
    return min(1.0, entropy(counts) / 4.0), float(counts.max()) / total


def _edge_density(lum: np.ndarray, stride: int) -> float:
    sampled = lum[::stride, ::stride]
    if sampled.size == 0:
        return 0.0
    edges = int((np.abs(np.diff(sampled, axis=1)) > EDGE_DELTA).sum())
    return min(1.0, edges / (sampled.size * 0.1))


def _content_unevenness(lum: np.ndarray, stride: int) -> float:
    hits, samples = grid_edge_ratios(lum, stride, EDGE_DELTA)
    populated = samples > 0
    ratios = hits[populated] / samples[populated]
    if ratios.size == 0:
        return 0.0
    average = float(ratios.mean())
    if average <= 0:
        return 0.0
    return min(1.0, float(ratios.std()) / average)


def _brightness_entropy(pixels: np.ndarray, stride: int) -> float:
    flat = pixels.reshape(-1, 4)[::stride]
    if flat.shape[0] == 0:
        return 0.0
    bins = np.minimum(BRIGHTNESS_BINS - 1, (luminance(flat) / 25.6).astype(np.int64))
    counts = np.bincount(bins, minlength=BRIGHTNESS_BINS)
    return min(1.0, entropy(counts) / math.log2(BRIGHTNESS_BINS))


def _sharpness(lum: np.ndarray, stride: int) -> float:
    height, width = lum.shape
    if height < 3 or width < 3:
        return 0.0
    center = lum[1:-1:stride, 1:-1:stride]
    left = lum[1:-1:stride, 0:-2:stride]
    right = lum[1:-1:stride, 2::stride]
    top = lum[0:-2:stride, 1:-1:stride]
    bottom = lum[2::stride, 1:-1:stride]
    laplacian = np.abs(4 * center - left - right - top - bottom)
    if laplacian.size == 0:
        return 0.0
    return min(1.0, float(laplacian.mean()) / SHARPNESS_SCALE)


def _gradient_linearity(lum: np.ndarray, stride: int) -> float:
    """Best per-row linearity: brightness stepping by a steady non-zero amount."""

    sampled = lum[::stride, ::stride]
    if sampled.shape[1] <= 5:
        return 0.0
    diffs = np.diff(sampled, axis=1)
    mean_step = diffs.mean(axis=1)
    spread = diffs.std(axis=1)
    magnitude = np.abs(mean_step)
    sloped = magnitude > 0.5
    if not sloped.any():
        return 0.0
    linearity = np.maximum(0.0, 1.0 - spread[sloped] / magnitude[sloped] / 0.5)
    return min(1.0, float(linearity.max()))
