from __future__ import annotations

import numpy as np
import pytest

from src.analysis.cache import ResultCache, fingerprint
from src.models import AnalysisOptions, FrameAnalysisResult, PixelBuffer


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _buffer(value: int, width: int = 20, height: int = 10) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((height, width, 4), value, dtype=np.uint8))


def test_fingerprint_depends_on_dimensions_pixels_and_options() -> None:
    options = AnalysisOptions()

    base = fingerprint(_buffer(10), options)

    assert base.startswith("20x10_")
    assert base.endswith("opts_2_0.8_0.8")
    assert fingerprint(_buffer(10), options) == base
    assert fingerprint(_buffer(11), options) != base
    assert fingerprint(_buffer(10, width=30), options) != base
    assert fingerprint(_buffer(10), AnalysisOptions(sample_rate=4)) != base
    assert fingerprint(_buffer(10), AnalysisOptions(simplified_analysis=True)) != base


def test_fingerprint_samples_middle_row_only() -> None:
    pixels = np.zeros((10, 20, 4), dtype=np.uint8)
    changed = pixels.copy()
    changed[0, :, :] = 200

    assert fingerprint(PixelBuffer.from_array(pixels), AnalysisOptions()) == fingerprint(
        PixelBuffer.from_array(changed), AnalysisOptions()
    )


def test_cache_returns_stored_result_until_ttl_expires() -> None:
    clock = _FakeClock()
    cache = ResultCache(ttl_seconds=300, max_entries=10, clock=clock)
    result = FrameAnalysisResult(static_score=0.9)

    cache.put("key", result)
    clock.now = 299.0
    assert cache.get("key") is result

    clock.now = 300.0
    assert cache.get("key") is None
    assert "key" not in cache


def test_cache_evicts_oldest_entry_when_full() -> None:
    clock = _FakeClock()
    cache = ResultCache(ttl_seconds=300, max_entries=100, clock=clock)

    for index in range(101):
        clock.now = float(index)
        cache.put(f"key-{index}", FrameAnalysisResult())

    assert len(cache) == 100
    assert "key-0" not in cache
    assert "key-100" in cache


def test_cache_clear_and_invalid_size() -> None:
    cache = ResultCache()
    cache.put("a", FrameAnalysisResult())
    cache.clear()

    assert len(cache) == 0
    with pytest.raises(ValueError):
        ResultCache(max_entries=0)
