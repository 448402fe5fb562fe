from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from src.models import PixelBuffer

DUPLICATE_THRESHOLD = 0.85
SELECTION_THRESHOLD = 0.75
PIXEL_DELTA = 30.0
REGIONS_PER_AXIS = 3
MIN_SIMILAR_REGIONS = 6
MAX_DIFF = 255 * 3
MAX_SAMPLES = 10_000


def is_similar(first: PixelBuffer, second: PixelBuffer, threshold: float = DUPLICATE_THRESHOLD) -> bool:
    """Return True when two frames are near-duplicates.

    Both frames are split into a 3x3 grid and sampled at a stride of
    ``max(3, min(width, height) // 80)``. A sample matches when the mean
    channel difference is below 30. Frames are too similar when the overall
    match ratio exceeds ``threshold`` or when at least six regions exceed
    ``threshold - 0.05`` on their own, which catches a single changing region
    such as a moving subtitle.
    """

    if first.width != second.width or first.height != second.height:
        return False
    width, height = first.width, first.height
    rows = min(first.complete_rows, second.complete_rows)
    if width <= 0 or rows <= 0:
        return False

    stride = max(3, min(width, height) // 80)
    region_width = width // REGIONS_PER_AXIS
    region_height = height // REGIONS_PER_AXIS
    a = first.as_array()
    b = second.as_array()

    similar_total = 0
    sample_total = 0
    similar_regions = 0
    for region_y in range(REGIONS_PER_AXIS):
        for region_x in range(REGIONS_PER_AXIS):
            ys = np.arange(region_y * region_height, min((region_y + 1) * region_height, rows), stride)
            xs = np.arange(region_x * region_width, (region_x + 1) * region_width, stride)
            if ys.size == 0 or xs.size == 0:
                continue
            window_a = a[np.ix_(ys, xs)][..., :3].astype(np.int16)
            window_b = b[np.ix_(ys, xs)][..., :3].astype(np.int16)
            matches = np.abs(window_a - window_b).mean(axis=-1) < PIXEL_DELTA
            similar = int(matches.sum())
            similar_total += similar
            sample_total += matches.size
            if similar / matches.size > threshold - 0.05:
                similar_regions += 1

    if sample_total == 0:
        # frames narrower or shorter than the grid are compared whole
        delta = np.abs(a[:rows, :, :3].astype(np.int16) - b[:rows, :, :3].astype(np.int16)).mean(axis=-1)
        return float((delta < PIXEL_DELTA).mean()) > threshold

    overall = similar_total / sample_total
    return overall > threshold or similar_regions >= MIN_SIMILAR_REGIONS


def is_similar_to_any(
    candidate: PixelBuffer,
    existing: Sequence[PixelBuffer],
    threshold: float = DUPLICATE_THRESHOLD,
) -> bool:
    return any(is_similar(candidate, frame, threshold) for frame in existing)


def frame_similarity(first: PixelBuffer, second: PixelBuffer) -> float:
    """Whole-frame similarity ``1 - mean(|dR|+|dG|+|dB|) / 765`` over at most ~10k samples."""

    if first.width != second.width or first.height != second.height:
        return 0.0
    length = min(first.data.size, second.data.size) // 4
    if length == 0:
        return 0.0
    step = max(1, (length * 4) // MAX_SAMPLES)
    a = first.data[: length * 4].reshape(-1, 4)[::step, :3].astype(np.int32)
    b = second.data[: length * 4].reshape(-1, 4)[::step, :3].astype(np.int32)
    average_diff = float(np.abs(a - b).sum(axis=1).mean())
    return max(0.0, min(1.0, 1.0 - average_diff / MAX_DIFF))


def diversity_filter(frames: Sequence[PixelBuffer], threshold: float = SELECTION_THRESHOLD) -> list[int]:
    """Indices of frames kept after dropping any frame too close to an earlier kept one."""

    kept: list[int] = []
    for index, frame in enumerate(frames):
        if all(frame_similarity(frame, frames[other]) <= threshold for other in kept):
            kept.append(index)
    return kept
