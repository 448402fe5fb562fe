from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from src.config import ExtractionSettings
from src.ingest.frame_provider import FrameProvider, is_valid_pixel_buffer
from src.models import SampledFrame
from src.sampling.frame_sampler import sample_timestamps
from src.sampling.similarity import SELECTION_THRESHOLD, diversity_filter

logger = logging.getLogger(__name__)


class FrameExtractionError(RuntimeError):
    """No frame at all could be produced from the video."""


@dataclass(slots=True)
class ExtractionReport:
    timestamps: list[float] = field(default_factory=list)
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    used_middle_fallback: bool = False


def extract_frames(
    provider: FrameProvider,
    *,
    frame_count: int = 10,
    start_time: float = 0.0,
    mode: str = "uniform",
    diversity_enhanced: bool = True,
    max_frame_count: int = 30,
    seed: int | None = None,
    settings: ExtractionSettings | None = None,
    similarity_threshold: float = SELECTION_THRESHOLD,
    report: ExtractionReport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[SampledFrame]:
    """Decode candidate frames at sampled timestamps.

    Each timestamp is retried up to ``max_retries`` times with an increasing
    delay; invalid frames are skipped without retry. When nothing is decoded
    the middle of the video is tried once more before ``FrameExtractionError``
    is raised. With diversity enhancement, near-identical frames are dropped.
    """

    settings = settings or ExtractionSettings()
    report = report if report is not None else ExtractionReport()
    duration = float(provider.duration_seconds)
    if duration <= 0:
        raise ValueError(f"Invalid video duration: {duration}")

    count = min(frame_count, max_frame_count)
    timestamps = sample_timestamps(
        duration,
        count,
        start_time=start_time,
        mode=mode,
        diversity_enhanced=diversity_enhanced,
        seed=seed,
    )
    timestamps = [point for point in timestamps if start_time <= point < duration - 0.1]
    report.timestamps = list(timestamps)
    if not timestamps:
        raise FrameExtractionError(f"No valid timestamps could be sampled from a {duration:.1f}s video.")

    frames: list[SampledFrame] = []
    for position, timestamp in enumerate(timestamps, start=1):
        frame = _extract_one(provider, timestamp, position, len(timestamps), settings, report, sleep)
        if frame is not None:
            frames.append(frame)

        if report.failed > 5 and report.failed / position > 0.95:
            logger.error("Error rate too high (%d of %d attempted); stopping extraction.", report.failed, position)
            break

    logger.info(
        "Frame extraction: %d timestamps, %d succeeded, %d skipped, %d failed.",
        len(timestamps),
        report.succeeded,
        report.skipped,
        report.failed,
    )
    if report.errors:
        logger.warning("Extraction errors: %s", "; ".join(report.errors[:5]))

    if not frames:
        frames = _middle_frame_fallback(provider, duration, report)
    if not frames:
        raise FrameExtractionError(_diagnostics(provider, duration, count, mode, report))

    step = max(1, len(frames) // max(1, count))
    frames = [frame for position, frame in enumerate(frames) if position % step == 0][:count]

    if diversity_enhanced and len(frames) > 1:
        kept = diversity_filter([frame.buffer for frame in frames], similarity_threshold)
        if len(kept) < len(frames):
            logger.info("Diversity filter kept %d of %d frames.", len(kept), len(frames))
        frames = [frames[position] for position in kept]
    return frames


def _extract_one(
    provider: FrameProvider,
    timestamp: float,
    position: int,
    total: int,
    settings: ExtractionSettings,
    report: ExtractionReport,
    sleep: Callable[[float], None],
) -> SampledFrame | None:
    max_retries = max(0, settings.max_retries)
    for attempt in range(max_retries + 1):
        try:
            buffer = provider.read_frame(timestamp)
        except RuntimeError as exc:
            message = f"Frame extraction failed at {timestamp:.1f}s: {exc}"
            if attempt >= max_retries:
                report.failed += 1
                report.errors.append(message)
                logger.warning("%s (retries exhausted)", message)
                return None
            logger.warning("%s (retry %d/%d)", message, attempt + 1, max_retries)
            sleep(settings.retry_delay_seconds * (attempt + 1))
            continue

        if is_valid_pixel_buffer(
            buffer,
            content_threshold=settings.content_threshold,
            min_opaque_ratio=settings.min_opaque_ratio,
        ):
            report.succeeded += 1
            logger.debug("Extracted frame %d/%d at %.1fs", position, total, timestamp)
            return SampledFrame(timestamp_seconds=timestamp, buffer=buffer)

        report.skipped += 1
        logger.warning("Skipping invalid frame at %.1fs", timestamp)
        return None
    return None


def _middle_frame_fallback(provider: FrameProvider, duration: float, report: ExtractionReport) -> list[SampledFrame]:
    middle = duration / 2
    try:
        buffer = provider.read_frame(middle)
    except RuntimeError as exc:
        report.errors.append(f"Middle-frame fallback failed at {middle:.1f}s: {exc}")
        logger.warning("Middle-frame fallback failed: %s", exc)
        return []
    if buffer.data.size == 0:
        return []
    report.used_middle_fallback = True
    logger.info("Using middle frame at %.1fs as fallback.", middle)
    return [SampledFrame(timestamp_seconds=middle, buffer=buffer)]


def _diagnostics(provider: FrameProvider, duration: float, count: int, mode: str, report: ExtractionReport) -> str:
    return (
        "No valid frames could be extracted. "
        f"Video duration: {duration:.1f}s, dimensions: {provider.width}x{provider.height}; "
        f"requested {count} frames ({mode}) at {len(report.timestamps)} timestamps; "
        f"succeeded: {report.succeeded}, skipped: {report.skipped}, failed: {report.failed}; "
        f"first errors: {'; '.join(report.errors[:3]) or 'none'}. "
        "Check that the video file is complete or try another format."
    )
