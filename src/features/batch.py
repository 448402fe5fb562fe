from __future__ import annotations

import logging

from src.features.diagnostics import frame_diagnostics
from src.features.diversity import diversity_score
from src.features.empty_frame import empty_frame_score
from src.features.people_score import people_score
from src.features.static_score import static_score
from src.features.subtitle_score import subtitle_score
from src.models import AnalysisOptions, FrameAnalysisResult, PixelBuffer

logger = logging.getLogger(__name__)


def batch_analyze(buffer: PixelBuffer, options: AnalysisOptions | None = None) -> FrameAnalysisResult:
    """Compute every score for one frame in a single call.

    Simplified analysis raises the sample rate to at least 4 and skips the
    diagnostics. Any failure yields neutral scores instead of an exception.
    """

    options = options or AnalysisOptions()
    sample_rate = options.effective_sample_rate
    try:
        result = FrameAnalysisResult(
            static_score=static_score(buffer, sample_rate),
            subtitle_score=subtitle_score(
                buffer,
                strength=options.subtitle_detection_strength,
                variant=options.subtitle_variant,
            ),
            people_score=people_score(buffer, sample_rate),
            empty_frame_score=empty_frame_score(buffer, sample_rate),
            diversity_score=diversity_score(buffer, sample_rate),
        )
        if not options.simplified_analysis:
            result.diagnostics = frame_diagnostics(buffer, sample_rate)
    except Exception:
        logger.exception(
            "Batch analysis failed for %sx%s frame; using neutral scores.",
            buffer.width,
            buffer.height,
        )
        return FrameAnalysisResult.neutral()

    logger.debug(
        "Analyzed %sx%s frame (%s mode).",
        buffer.width,
        buffer.height,
        "simplified" if options.simplified_analysis else "full",
    )
    return result
