from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from src.models import AnalysisOptions, CacheEntry, FrameAnalysisResult, PixelBuffer

logger = logging.getLogger(__name__)

FINGERPRINT_SAMPLES = 10


def fingerprint(buffer: PixelBuffer, options: AnalysisOptions) -> str:
    """Sparse cache key: dimensions, ten pixels along the middle row, and the options.

    Different frames can share a key; callers that need exact results should
    bypass the cache.
    """

    parts = [f"{buffer.width}x{buffer.height}_"]
    row = buffer.height // 2
    data = buffer.data
    for i in range(FINGERPRINT_SAMPLES):
        x = int(buffer.width / FINGERPRINT_SAMPLES * i)
        offset = (row * buffer.width + x) * 4
        if 0 <= offset and offset + 2 < data.size:
            parts.append(f"{data[offset]},{data[offset + 1]},{data[offset + 2]}_")
    parts.append(
        f"opts_{options.sample_rate}_{options.subtitle_detection_strength}_{options.static_frame_threshold}"
    )
    if options.simplified_analysis or options.subtitle_variant != "rich":
        parts.append(f"_{int(options.simplified_analysis)}_{options.subtitle_variant}")
    return "".join(parts)


class ResultCache:
    """Bounded TTL cache of analysis results keyed by buffer fingerprint."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> FrameAnalysisResult | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.timestamp >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.result

    def put(self, key: str, result: FrameAnalysisResult) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(fingerprint=key, timestamp=self._clock(), result=result)
            while len(self._entries) > self.max_entries:
                oldest = min(self._entries.values(), key=lambda entry: entry.timestamp)
                del self._entries[oldest.fingerprint]
                logger.debug("Evicted cache entry %s", oldest.fingerprint)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
