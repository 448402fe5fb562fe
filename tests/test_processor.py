from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

import src.analysis.processor as processor_module
from src.analysis.processor import FrameProcessor
from src.config import Settings
from src.models import AnalysisOptions, CandidateFrame, FrameAnalysisResult, PixelBuffer, SelectionPreferences


def _settings() -> Settings:
    settings = Settings()
    settings.dispatcher.use_background = False
    return settings


def _frame(seed: int, width: int = 32, height: int = 24) -> PixelBuffer:
    rng = np.random.default_rng(seed)
    return PixelBuffer.from_array(rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8))


def test_analyze_caches_results_by_fingerprint() -> None:
    with FrameProcessor(_settings()) as processor:
        buffer = _frame(1)

        first = processor.analyze(buffer)
        second = processor.analyze(buffer)

        assert second is first
        assert len(processor.cache) == 1
        assert first.diagnostics is not None


def test_analyze_without_cache_does_not_store() -> None:
    with FrameProcessor(_settings()) as processor:
        processor.analyze(_frame(2), use_cache=False)

        assert len(processor.cache) == 0


def test_disabled_cache_setting_bypasses_cache() -> None:
    settings = _settings()
    settings.cache.enabled = False
    with FrameProcessor(settings) as processor:
        processor.analyze(_frame(3))

        assert len(processor.cache) == 0


def test_single_scores_are_in_range() -> None:
    with FrameProcessor(_settings()) as processor:
        buffer = _frame(4)

        for score in (processor.static_score(buffer), processor.subtitle_score(buffer), processor.people_score(buffer)):
            assert 0.0 <= score <= 1.0


def test_analyze_async_resolves_and_fills_cache() -> None:
    with FrameProcessor(_settings()) as processor:
        future = processor.analyze_async(_frame(5))

        assert isinstance(future.result(timeout=5), FrameAnalysisResult)
        assert len(processor.cache) == 1


def test_analyze_frames_uses_neutral_scores_for_failed_submissions() -> None:
    frames = [_frame(6), _frame(7), _frame(8)]
    with FrameProcessor(_settings()) as processor:
        original = processor.analyze_async

        def _flaky(buffer, options=None, *, use_cache=True):
            if buffer is frames[1]:
                raise RuntimeError("dispatcher gone")
            return original(buffer, options, use_cache=use_cache)

        with pytest.MonkeyPatch.context() as monkeypatch:
            monkeypatch.setattr(processor, "analyze_async", _flaky)
            candidates = processor.analyze_frames(frames)

    assert [candidate.index for candidate in candidates] == [0, 1, 2]
    assert candidates[1].scores.static_score == 0.5
    assert candidates[1].scores.people_score == 0.5


def test_find_optimal_frames_forces_simplified_analysis_and_prefilters() -> None:
    frames = [_frame(seed) for seed in range(100)]
    captured: dict[str, object] = {}

    with FrameProcessor(_settings()) as processor:

        def _fake_analyze(frames_arg, indices=None, options=None):
            captured.setdefault("indices", list(indices))
            captured.setdefault("options", options)
            return [CandidateFrame(index=index, scores=FrameAnalysisResult(people_score=index / 100)) for index in indices]

        with pytest.MonkeyPatch.context() as monkeypatch:
            monkeypatch.setattr(processor, "analyze_frames", _fake_analyze)
            selected = processor.find_optimal_frames(
                frames,
                count=3,
                preferences=SelectionPreferences(prefer_people=True),
                options=AnalysisOptions(sample_rate=6),
            )

    options = captured["options"]
    assert isinstance(options, AnalysisOptions)
    assert options.simplified_analysis
    assert options.sample_rate == 3
    assert len(captured["indices"]) <= 40
    assert len(selected) == 3
    assert [candidate.index for candidate in selected] == sorted(candidate.index for candidate in selected)


def test_find_optimal_frames_with_real_analysis() -> None:
    frames = [_frame(seed) for seed in range(6)]
    with FrameProcessor(_settings()) as processor:
        selected = processor.find_optimal_frames(frames, count=2)

    assert len(selected) == 2
    assert all(0 <= candidate.index < 6 for candidate in selected)


def test_find_optimal_frames_on_empty_input() -> None:
    with FrameProcessor(_settings()) as processor:
        assert processor.find_optimal_frames([], count=3) == []


class _FakeProvider:
    instances: list["_FakeProvider"] = []

    def __init__(self, video_path, *, max_dimension, keep_original_resolution, pool) -> None:
        self.video_path = Path(video_path)
        self.pool = pool
        self.duration_seconds = 60.0
        self.width = 32
        self.height = 24
        self.closed = False
        _FakeProvider.instances.append(self)

    def read_frame(self, timestamp_seconds: float) -> PixelBuffer:
        return _frame(int(timestamp_seconds))

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def test_extract_frames_uses_pooled_provider_and_closes_it() -> None:
    _FakeProvider.instances.clear()
    with FrameProcessor(_settings()) as processor:
        with pytest.MonkeyPatch.context() as monkeypatch:
            monkeypatch.setattr(processor_module, "VideoFrameProvider", _FakeProvider)
            frames = processor.extract_frames("clip.mp4", frame_count=4, seed=3)

        provider = _FakeProvider.instances[0]
        assert provider.pool is processor.pool

    assert provider.closed
    assert 1 <= len(frames) <= 4


def test_dispose_clears_cache() -> None:
    processor = FrameProcessor(_settings())
    processor.analyze(_frame(9))

    processor.dispose()

    assert len(processor.cache) == 0
