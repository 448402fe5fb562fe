from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future
from dataclasses import replace
from pathlib import Path

from src.analysis.cache import ResultCache, fingerprint
from src.analysis.dispatcher import ExecutionDispatcher
from src.analysis.pool import CanvasPool
from src.config import Settings
from src.ingest.extract_frames import ExtractionReport, extract_frames
from src.ingest.frame_provider import VideoFrameProvider
from src.models import (
    AnalysisOptions,
    CandidateFrame,
    FrameAnalysisResult,
    PixelBuffer,
    SampledFrame,
    SelectionPreferences,
    TaskType,
)
from src.selection.optimal_selector import SelectionPolicy, prefilter_indices, select_optimal_frames

logger = logging.getLogger(__name__)

SELECTION_MAX_SAMPLE_RATE = 3


class FrameProcessor:
    """Caller-owned entry point for frame analysis, extraction and selection.

    One processor owns one dispatcher, one result cache and one canvas pool.
    It is meant to be created, used and disposed by the same thread; use it
    as a context manager to guarantee disposal.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dispatcher: ExecutionDispatcher | None = None,
        cache: ResultCache | None = None,
        pool: CanvasPool | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.dispatcher = dispatcher or ExecutionDispatcher(
            self.settings.dispatcher,
            log_level=self.settings.logging.level,
        )
        self.cache = cache or ResultCache(
            ttl_seconds=self.settings.cache.ttl_seconds,
            max_entries=self.settings.cache.max_entries,
        )
        self.pool = pool or CanvasPool(max_size=self.settings.pool.max_size)
        self.options = AnalysisOptions.from_settings(self.settings.analysis)

    def __enter__(self) -> FrameProcessor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def analyze(
        self,
        buffer: PixelBuffer,
        options: AnalysisOptions | None = None,
        *,
        use_cache: bool = True,
        caller_timeout: float | None = None,
    ) -> FrameAnalysisResult:
        """All scores for one frame, served from the cache when possible."""

        options = options or self.options
        key = self._cache_key(buffer, options, use_cache)
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        task = self.dispatcher.create_task(TaskType.BATCH_ANALYSIS, buffer, options)
        result = self.dispatcher.run(task, caller_timeout=caller_timeout)
        if key is not None:
            self.cache.put(key, result)
        return result

    def analyze_async(
        self,
        buffer: PixelBuffer,
        options: AnalysisOptions | None = None,
        *,
        use_cache: bool = True,
    ) -> Future:
        options = options or self.options
        key = self._cache_key(buffer, options, use_cache)
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                future: Future = Future()
                future.set_result(cached)
                return future

        task = self.dispatcher.create_task(TaskType.BATCH_ANALYSIS, buffer, options)
        future = self.dispatcher.submit(task)
        if key is not None:
            future.add_done_callback(lambda done: self._store(key, done))
        return future

    def static_score(self, buffer: PixelBuffer, sample_rate: int = 1) -> float:
        options = replace(self.options, sample_rate=sample_rate)
        return self.dispatcher.run(self.dispatcher.create_task(TaskType.STATIC_SCORE, buffer, options))

    def subtitle_score(self, buffer: PixelBuffer, detection_strength: float = 0.8) -> float:
        options = replace(self.options, subtitle_detection_strength=detection_strength)
        return self.dispatcher.run(self.dispatcher.create_task(TaskType.SUBTITLE_SCORE, buffer, options))

    def people_score(self, buffer: PixelBuffer, sample_rate: int = 4) -> float:
        options = replace(self.options, sample_rate=sample_rate)
        return self.dispatcher.run(self.dispatcher.create_task(TaskType.PEOPLE_SCORE, buffer, options))

    def analyze_frames(
        self,
        frames: Sequence[PixelBuffer],
        indices: Sequence[int] | None = None,
        options: AnalysisOptions | None = None,
    ) -> list[CandidateFrame]:
        """Score frames in batches; a frame whose analysis fails gets neutral scores."""

        options = options or self.options
        indices = list(range(len(frames))) if indices is None else list(indices)
        batch_size = max(1, self.settings.selection.batch_size)
        candidates: list[CandidateFrame] = []
        for start in range(0, len(indices), batch_size):
            batch = indices[start : start + batch_size]
            logger.debug("Analyzing batch %d/%d", start // batch_size + 1, -(-len(indices) // batch_size))
            futures = [(index, self._submit_safely(frames[index], options)) for index in batch]
            for index, future in futures:
                candidates.append(CandidateFrame(index=index, scores=self._settle(index, future)))
        return candidates

    def find_optimal_frames(
        self,
        frames: Sequence[PixelBuffer],
        count: int | None = None,
        preferences: SelectionPreferences | None = None,
        options: AnalysisOptions | None = None,
    ) -> list[CandidateFrame]:
        """Analyse up to ``max_candidates`` frames and select the best ``count`` of them."""

        selection = self.settings.selection
        count = selection.count if count is None else count
        preferences = preferences or SelectionPreferences.from_settings(selection)
        options = options or self.options
        options = replace(
            options,
            sample_rate=min(options.sample_rate, SELECTION_MAX_SAMPLE_RATE),
            simplified_analysis=True,
        )
        if not frames:
            return []

        indices = prefilter_indices(len(frames), selection.max_candidates)
        if len(indices) < len(frames):
            logger.info("Prefiltered %d frames down to %d for analysis.", len(frames), len(indices))
        candidates = self.analyze_frames(frames, indices, options)

        return select_optimal_frames(
            candidates,
            count,
            preferences,
            policy=SelectionPolicy.from_settings(selection),
            frames=frames,
            neighbor_analyzer=lambda wanted: self.analyze_frames(frames, wanted, options),
            frame_total=len(frames),
        )

    def extract_frames(
        self,
        video_path: str | Path,
        *,
        frame_count: int | None = None,
        start_time: float = 0.0,
        mode: str | None = None,
        diversity_enhanced: bool | None = None,
        seed: int | None = None,
        report: ExtractionReport | None = None,
    ) -> list[SampledFrame]:
        sampler = self.settings.sampler
        extraction = self.settings.extraction
        with VideoFrameProvider(
            video_path,
            max_dimension=extraction.max_dimension,
            keep_original_resolution=extraction.keep_original_resolution,
            pool=self.pool,
        ) as provider:
            return extract_frames(
                provider,
                frame_count=sampler.frame_count if frame_count is None else frame_count,
                start_time=start_time,
                mode=mode or sampler.mode,
                diversity_enhanced=sampler.diversity_enhanced if diversity_enhanced is None else diversity_enhanced,
                max_frame_count=sampler.max_frame_count,
                seed=sampler.seed if seed is None else seed,
                settings=extraction,
                similarity_threshold=self.settings.selection.selection_threshold,
                report=report,
            )

    def dispose(self) -> None:
        self.dispatcher.dispose()
        self.cache.clear()
        self.pool.clear()

    def _cache_key(self, buffer: PixelBuffer, options: AnalysisOptions, use_cache: bool) -> str | None:
        if not (use_cache and self.settings.cache.enabled):
            return None
        return fingerprint(buffer, options)

    def _store(self, key: str, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.cache.put(key, future.result())

    def _submit_safely(self, buffer: PixelBuffer, options: AnalysisOptions) -> Future | None:
        try:
            return self.analyze_async(buffer, options)
        except RuntimeError as exc:
            logger.warning("Could not submit frame analysis: %s", exc)
            return None

    def _settle(self, index: int, future: Future | None) -> FrameAnalysisResult:
        if future is None:
            return FrameAnalysisResult.neutral()
        try:
            return future.result(timeout=self.settings.dispatcher.heavy_task_timeout_seconds)
        except Exception as exc:
            logger.warning("Analysis of frame %d failed (%s); using neutral scores.", index, exc)
            return FrameAnalysisResult.neutral()
