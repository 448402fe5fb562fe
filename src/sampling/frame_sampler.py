from __future__ import annotations

import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

SAMPLER_MODES = ("uniform", "random", "keyframes")
SHORT_VIDEO_SECONDS = 30.0
MEDIUM_VIDEO_SECONDS = 300.0
MAX_SEGMENTS = 6
# (start fraction, end fraction, share of points) for long videos
LONG_VIDEO_SECTIONS = ((0.05, 0.25, 0.4), (0.3, 0.7, 0.4), (0.75, 0.95, 0.2))


def minimum_gap(available_duration: float, frame_count: int, diversity_enhanced: bool = True) -> float:
    """Smallest spacing allowed between consecutive sampled timestamps."""

    count = max(1, frame_count)
    if diversity_enhanced:
        return max(3.0, available_duration / (count * 1.5))
    return max(0.5, available_duration / (count * 3))


def sample_timestamps(
    duration: float,
    frame_count: int,
    start_time: float = 0.0,
    mode: str = "uniform",
    diversity_enhanced: bool = True,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> list[float]:
    """Pick candidate timestamps in ``[start_time, duration)`` in chronological order.

    ``uniform`` spreads jittered points evenly, ``random`` draws one point from
    each of ``frame_count`` shuffled segments and ``keyframes`` adapts its
    layout to the video length. Uniform and random points keep at least
    ``minimum_gap`` between neighbours; when fewer than two points survive,
    up to three evenly spaced points are added.
    """

    if not math.isfinite(duration) or duration <= 0:
        raise ValueError(f"Invalid video duration: {duration}")
    if frame_count < 0:
        raise ValueError(f"frame_count must be non-negative, got {frame_count}")
    if mode not in SAMPLER_MODES:
        raise ValueError(f"Unsupported sampler mode: {mode}. Expected one of {', '.join(SAMPLER_MODES)}.")

    start = max(0.0, float(start_time))
    available = duration - start
    if available <= 0:
        raise ValueError(f"Start time {start_time} is not before the video duration {duration}.")
    if frame_count == 0:
        return []

    rng = rng or np.random.default_rng(seed)
    upper = duration - min(0.1, available * 0.05)

    if mode == "uniform":
        points = _uniform(start, available, upper, frame_count, diversity_enhanced, rng)
    elif mode == "random":
        points = _random(start, available, upper, frame_count, diversity_enhanced, rng)
    else:
        points = _keyframes(start, available, frame_count, rng)

    if len(points) < 2:
        points = _backfill(points, start, available, upper)

    logger.debug("Sampled %d timestamps (%s) from %.1fs video.", len(points), mode, duration)
    return points


def _uniform(
    start: float,
    available: float,
    upper: float,
    frame_count: int,
    diversity_enhanced: bool,
    rng: np.random.Generator,
) -> list[float]:
    step = available / (frame_count - 1 or 1)
    jitter_fraction = 0.3 if diversity_enhanced else 0.1
    gap = minimum_gap(available, frame_count, diversity_enhanced)

    points: list[float] = []
    for i in range(frame_count):
        jitter = (rng.random() * 2 - 1) * step * jitter_fraction
        point = max(start + i * step + jitter, start)
        if points and point - points[-1] < gap:
            point = points[-1] + gap
        if point >= upper:
            break
        points.append(point)
    return points


def _random(
    start: float,
    available: float,
    upper: float,
    frame_count: int,
    diversity_enhanced: bool,
    rng: np.random.Generator,
) -> list[float]:
    segment_count = frame_count * 3
    segment_length = available / segment_count
    gap = minimum_gap(available, frame_count, diversity_enhanced)

    order = rng.permutation(segment_count)
    chosen = sorted(int(segment) for segment in order[:frame_count])

    points: list[float] = []
    for segment in chosen:
        offset = 0.1 + rng.random() * 0.85
        point = start + (segment + offset) * segment_length
        if points and point - points[-1] < gap:
            point = points[-1] + gap
        if point >= upper:
            break
        points.append(point)
    return points


def _keyframes(start: float, available: float, frame_count: int, rng: np.random.Generator) -> list[float]:
    points: list[float] = []
    end = start + available

    if available <= SHORT_VIDEO_SECONDS:
        step = available / (frame_count + 1)
        for i in range(1, frame_count + 1):
            offset = (rng.random() - 0.5) * min(step * 0.3, 2.0)
            points.append(max(start + 1, min(end - 1, start + i * step + offset)))
    elif available <= MEDIUM_VIDEO_SECONDS:
        segments = min(frame_count, MAX_SEGMENTS)
        segment_length = available / segments
        per_segment = math.ceil(frame_count / segments)
        for i in range(segments):
            segment_start = start + i * segment_length
            for j in range(per_segment):
                if len(points) >= frame_count:
                    break
                progress = (j + 0.3 + rng.random() * 0.4) / per_segment
                point = segment_start + progress * segment_length
                if point < segment_start + segment_length - 1:
                    points.append(point)
    else:
        for section_start, section_end, share in LONG_VIDEO_SECTIONS:
            section_points = math.ceil(frame_count * share)
            origin = start + available * section_start
            length = available * (section_end - section_start)
            for i in range(section_points):
                progress = (i + 0.2 + rng.random() * 0.6) / section_points
                points.append(origin + progress * length)

    valid = {round(point, 1) for point in points if start <= point <= end - 1}
    return sorted(valid)[:frame_count]


def _backfill(points: list[float], start: float, available: float, upper: float) -> list[float]:
    filled = list(points)
    for k in range(1, 4):
        candidate = start + available * k / 4
        if candidate < upper and all(abs(candidate - existing) > 1e-6 for existing in filled):
            filled.append(candidate)
    return sorted(filled)
