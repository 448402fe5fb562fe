from __future__ import annotations

import pytest

from src.sampling.frame_sampler import minimum_gap, sample_timestamps


def _assert_increasing(points: list[float]) -> None:
    assert all(later > earlier for earlier, later in zip(points, points[1:]))


@pytest.mark.parametrize("mode", ["uniform", "random"])
def test_spaced_modes_respect_minimum_gap(mode: str) -> None:
    points = sample_timestamps(120.0, 10, mode=mode, seed=42)
    gap = minimum_gap(120.0, 10, diversity_enhanced=True)

    assert 1 <= len(points) <= 10
    assert all(0.0 <= point < 120.0 for point in points)
    _assert_increasing(points)
    assert all(later - earlier >= gap - 1e-9 for earlier, later in zip(points, points[1:]))


def test_minimum_gap_depends_on_diversity_flag() -> None:
    assert minimum_gap(120.0, 10, diversity_enhanced=True) == pytest.approx(8.0)
    assert minimum_gap(120.0, 10, diversity_enhanced=False) == pytest.approx(4.0)
    assert minimum_gap(10.0, 10, diversity_enhanced=True) == pytest.approx(3.0)
    assert minimum_gap(10.0, 10, diversity_enhanced=False) == pytest.approx(0.5)


@pytest.mark.parametrize("mode", ["uniform", "random", "keyframes"])
def test_same_seed_gives_same_timestamps(mode: str) -> None:
    assert sample_timestamps(90.0, 8, mode=mode, seed=7) == sample_timestamps(90.0, 8, mode=mode, seed=7)


def test_start_time_is_respected() -> None:
    points = sample_timestamps(200.0, 6, start_time=50.0, seed=1)

    assert points
    assert all(50.0 <= point < 200.0 for point in points)


def test_short_video_keyframes_stay_away_from_edges() -> None:
    points = sample_timestamps(10.0, 5, mode="keyframes", seed=3)

    assert 2 <= len(points) <= 5
    assert all(1.0 <= point <= 9.0 for point in points)
    _assert_increasing(points)


def test_long_video_keyframes_cover_sections() -> None:
    points = sample_timestamps(1000.0, 10, mode="keyframes", seed=5)

    assert 2 <= len(points) <= 10
    _assert_increasing(points)
    assert all(50.0 <= point <= 950.0 for point in points)
    assert any(point < 250.0 for point in points)
    assert any(300.0 <= point <= 700.0 for point in points)


def test_very_short_video_is_backfilled() -> None:
    points = sample_timestamps(2.0, 5, seed=9)

    assert len(points) >= 2
    assert all(0.0 <= point < 2.0 for point in points)
    _assert_increasing(points)


def test_zero_frames_yields_empty_list() -> None:
    assert sample_timestamps(60.0, 0) == []


@pytest.mark.parametrize(
    ("duration", "count", "kwargs"),
    [
        (0.0, 5, {}),
        (float("nan"), 5, {}),
        (60.0, -1, {}),
        (60.0, 5, {"mode": "scenes"}),
        (60.0, 5, {"start_time": 60.0}),
    ],
)
def test_invalid_arguments_raise(duration: float, count: int, kwargs: dict) -> None:
    with pytest.raises(ValueError):
        sample_timestamps(duration, count, **kwargs)
