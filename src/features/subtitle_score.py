from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from src.features.pixels import luminance, pixel_grid, quantized_keys, unit_score
from src.models import NEUTRAL_SCORE, PixelBuffer

# (start fraction, end fraction, weight) of the frame height
SCAN_BANDS = (
    (0.80, 1.00, 0.50),
    (0.70, 0.80, 0.20),
    (0.05, 0.15, 0.15),
    (0.15, 0.25, 0.10),
    (0.40, 0.60, 0.05),
)

# (r, g, b, alpha); opaque entries match regardless of alpha
BACKGROUND_COLORS = (
    (0, 0, 0, 128),
    (0, 0, 0, 255),
    (128, 128, 128, 128),
    (255, 255, 255, 128),
)
TEXT_COLORS = (
    (255, 255, 255),
    (255, 255, 0),
    (0, 255, 255),
    (0, 0, 0),
    (255, 0, 0),
    (0, 255, 0),
    (0, 0, 255),
    (255, 128, 0),
    (255, 0, 255),
)
COLOR_TOLERANCE = 30
EDGE_DELTA = 40.0
BRIGHT_LEVEL = 200.0
DARK_LEVEL = 50.0

FEATURE_WEIGHTS = {
    "text_patterns": 0.25,
    "horizontal_edges": 0.15,
    "contrast": 0.15,
    "regular_spacing": 0.15,
    "edge_ratio": 0.10,
    "color_patterns": 0.10,
    "box": 0.05,
    "vertical_edges": 0.03,
    "texture_uniformity": 0.02,
}

BOOST_ABOVE = 0.6
DAMP_BELOW = 0.1
SUBTITLE_VARIANTS = ("rich", "simple")


@dataclass(slots=True)
class _BandFeatures:
    text_patterns: float = 0.0
    horizontal_edges: float = 0.0
    contrast: float = 0.0
    regular_spacing: float = 0.0
    edge_ratio: float = 0.0
    color_patterns: float = 0.0
    box: float = 0.0
    vertical_edges: float = 0.0
    texture_uniformity: float = 0.0


def subtitle_score(buffer: PixelBuffer, strength: float = 0.8, variant: str = "rich") -> float:
    """Estimate how likely the frame carries burned-in subtitles."""

    if variant == "simple":
        return simple_subtitle_score(buffer, strength=strength)
    if variant != "rich":
        raise ValueError(f"Unsupported subtitle variant: {variant}")

    pixels = pixel_grid(buffer, scorer="subtitle_score")
    if pixels is None:
        return NEUTRAL_SCORE

    height = pixels.shape[0]
    totals = dict.fromkeys(FEATURE_WEIGHTS, 0.0)
    for start_fraction, end_fraction, weight in SCAN_BANDS:
        start = int(np.floor(height * start_fraction))
        end = height if end_fraction >= 1.0 else int(np.floor(height * end_fraction))
        if end <= start:
            continue
        features = _analyze_band(pixels[start:end])
        for name in FEATURE_WEIGHTS:
            totals[name] += getattr(features, name) * weight

    raw = sum(totals[name] * FEATURE_WEIGHTS[name] for name in FEATURE_WEIGHTS)
    return _shape_score(raw * strength)


def simple_subtitle_score(buffer: PixelBuffer, strength: float = 0.8) -> float:
    """Cheaper four-detector estimate focused on the lower part of the frame."""

    pixels = pixel_grid(buffer, scorer="simple_subtitle_score")
    if pixels is None:
        return NEUTRAL_SCORE

    lum = luminance(pixels)
    score = (
        _horizontal_line_rows(lum) * 0.3
        + _bottom_color_changes(pixels) * 0.3
        + _text_blocks(lum) * 0.25
        + _bottom_contrast(lum) * 0.15
    ) * strength
    return unit_score(score)


def _shape_score(score: float) -> float:
    score = unit_score(score)
    if score < DAMP_BELOW:
        return score * 0.5
    if score > BOOST_ABOVE:
        return min(1.0, score * 1.2)
    return score


def _analyze_band(band: np.ndarray) -> _BandFeatures:
    rows, width = band.shape[:2]
    pixel_count = rows * width
    lum = luminance(band)
    rgb = band[..., :3]
    alpha = band[..., 3]

    bright = lum > BRIGHT_LEVEL
    dark = lum < DARK_LEVEL

    background_hits = np.zeros((rows, width), dtype=bool)
    for red, green, blue, bg_alpha in BACKGROUND_COLORS:
        match = np.all(np.abs(rgb - np.array([red, green, blue])) < COLOR_TOLERANCE, axis=2)
        if bg_alpha != 255:
            match &= alpha < 240
        background_hits |= match
    text_hits = np.zeros((rows, width), dtype=bool)
    for color in TEXT_COLORS:
        text_hits |= np.all(np.abs(rgb - np.array(color)) < COLOR_TOLERANCE, axis=2)
    color_evidence = background_hits.sum() * 0.5 + text_hits.sum()

    horizontal = np.abs(np.diff(lum, axis=1)) > EDGE_DELTA
    edges_per_row = horizontal.sum(axis=1)
    vertical_edges = int((np.abs(np.diff(lum, axis=0)) > EDGE_DELTA).sum())

    uniform_rows = _uniform_rows(lum)
    longest_uniform_run = _longest_run(uniform_rows)

    consistency = 0
    last_strength = 0.0
    edge_rows = 0
    spaced_rows: list[np.ndarray] = []
    contrast_pixels = 0
    bright_per_row = bright.sum(axis=1)
    dark_per_row = dark.sum(axis=1)
    for row in range(rows):
        edge_count = int(edges_per_row[row])
        if edge_count > 0:
            line_strength = edge_count / width
            if abs(line_strength - last_strength) < 0.08 and line_strength > 0.04:
                consistency += 1
            last_strength = line_strength

        if edge_count > width * 0.025:
            edge_rows += 1
            if edge_count > 3:
                spaced_rows.append(np.flatnonzero(horizontal[row]) + 1)

        bright_count = int(bright_per_row[row])
        dark_count = int(dark_per_row[row])
        if bright_count + dark_count > width * 0.1:
            balance = min(bright_count, dark_count) / max(bright_count, dark_count)
            if balance > 0.1:
                contrast_pixels += bright_count + dark_count

    features = _BandFeatures(
        horizontal_edges=edge_rows / rows,
        contrast=contrast_pixels / pixel_count,
        color_patterns=color_evidence / pixel_count,
        vertical_edges=vertical_edges / pixel_count,
        texture_uniformity=int(uniform_rows.sum()) / rows,
    )
    if consistency > rows * 0.12:
        features.text_patterns = consistency / rows
    if 2 <= longest_uniform_run <= 5:
        features.box = min(1.0, longest_uniform_run / 5)
    features.regular_spacing = _regular_spacing(spaced_rows)
    features.edge_ratio = _edge_ratio(edge_rows, vertical_edges)
    features.color_patterns = max(features.color_patterns, _color_cluster_score(band, pixel_count))
    return features


def _color_cluster_score(band: np.ndarray, pixel_count: int) -> float:
    """Two dominant 16-level colours covering most of a band suggest text on a plate."""

    keys = quantized_keys(band, 16).reshape(-1)
    counts = np.sort(np.bincount(keys))[::-1]
    counts = counts[counts > 0]
    if counts.size < 2:
        return 0.0
    top_two_ratio = float(counts[0] + counts[1]) / pixel_count
    if top_two_ratio > 0.6:
        return min(1.0, (top_two_ratio - 0.6) * 2.5)
    return 0.0


def _uniform_rows(lum: np.ndarray) -> np.ndarray:
    rows, width = lum.shape
    if width <= 10:
        return np.zeros(rows, dtype=bool)
    median = np.sort(lum, axis=1)[:, width // 2]
    near_median = np.abs(lum - median[:, None]) < 25
    return near_median.mean(axis=1) > 0.75


def _longest_run(flags: np.ndarray) -> int:
    longest = 0
    current = 0
    for flag in flags:
        current = current + 1 if flag else 0
        longest = max(longest, current)
    return longest


def _regular_spacing(spaced_rows: list[np.ndarray]) -> float:
    if len(spaced_rows) <= 2:
        return 0.0
    gaps = np.concatenate([np.diff(positions) for positions in spaced_rows])
    gaps = gaps[(gaps > 3) & (gaps < 50)]
    if gaps.size <= 5:
        return 0.0
    variation = float(gaps.std() / gaps.mean())
    return 1.0 - variation if variation < 0.5 else 0.0


def _edge_ratio(edge_rows: int, vertical_edges: int) -> float:
    if edge_rows <= 0 or vertical_edges <= 0:
        return 0.0
    ratio = edge_rows / vertical_edges
    if 1.2 < ratio < 4:
        return 0.5 + min(0.5, (ratio - 1.2) / 2.8)
    return 0.0


def _horizontal_line_rows(lum: np.ndarray) -> float:
    height, width = lum.shape
    start = int(np.floor(height * 0.6))
    step = max(1, (height - start) // 20)
    sampled = lum[start::step, ::4]
    if sampled.size == 0:
        return 0.0
    changes = (np.abs(np.diff(sampled, axis=1)) > 30).sum(axis=1)
    line_rows = int(((changes > 5) & (changes < width / 10)).sum())
    return min(1.0, line_rows / (20 * 0.6))


def _bottom_color_changes(pixels: np.ndarray) -> float:
    height, width = pixels.shape[:2]
    start = int(np.floor(height * 0.7))
    x_step = max(1, width // 8)
    y_step = max(1, (height - start) // 4)
    sampled = pixels[start::y_step, ::x_step, :3].astype(np.int32)
    if sampled.shape[0] == 0:
        return 0.0
    coarse = (sampled // 32 * 32).sum(axis=2)
    changes = (np.diff(coarse, axis=1) != 0).sum(axis=1)
    text_like = int(((changes >= 3) & (changes <= 8 * 0.8)).sum())
    return min(1.0, text_like / (sampled.shape[0] * 0.5))


def _text_blocks(lum: np.ndarray, block: int = 16) -> float:
    height, width = lum.shape
    gradient = np.zeros_like(lum)
    if height >= 3 and width >= 3:
        dx = lum[1:-1, 2:] - lum[1:-1, :-2]
        dy = lum[2:, 1:-1] - lum[:-2, 1:-1]
        gradient[1:-1, 1:-1] = np.sqrt(dx * dx + dy * dy)

    peak = float(gradient.max()) if gradient.size else 0.0
    if peak < 10:
        return 0.1
    gradient /= peak

    y_blocks, x_blocks = height // block, width // block
    if y_blocks == 0 or x_blocks == 0:
        return 0.0
    tiles = gradient[: y_blocks * block, : x_blocks * block].reshape(y_blocks, block, x_blocks, block)
    edge_counts = (tiles > 0.2).sum(axis=(1, 3))
    averages = tiles.sum(axis=(1, 3)) / (block * block)
    area = block * block
    textual = (averages > 0.15) & (averages < 0.5) & (edge_counts > area * 0.1) & (edge_counts < area * 0.5)
    return min(1.0, int(textual.sum()) / (x_blocks * y_blocks * 0.3))


def _bottom_contrast(lum: np.ndarray) -> float:
    height, width = lum.shape
    start = int(np.floor(height * 0.7))
    x_step = max(1, width // 40)
    y_step = max(1, (height - start) // 10)

    padded = np.pad(lum, 1, mode="edge")
    shifted = np.stack(
        [padded[dy : dy + height, dx : dx + width] for dy in range(3) for dx in range(3)]
    )
    local_range = shifted.max(axis=0) - shifted.min(axis=0)
    sampled = local_range[start::y_step, ::x_step]
    if sampled.size == 0:
        return 0.0
    return min(1.0, int((sampled > 100).sum()) / (sampled.size * 0.2))
