from __future__ import annotations

import logging
from typing import Any

from src.features.batch import batch_analyze
from src.features.people_score import people_score
from src.features.static_score import static_score
from src.features.subtitle_score import subtitle_score
from src.logging_config import configure_worker_logging
from src.models import NEUTRAL_SCORE, AnalysisOptions, FrameAnalysisResult, PixelBuffer, TaskType

logger = logging.getLogger(__name__)

SINGLE_SCORE_TYPES = (TaskType.STATIC_SCORE, TaskType.SUBTITLE_SCORE, TaskType.PEOPLE_SCORE)
DEFAULT_SAMPLE_RATES = {TaskType.STATIC_SCORE: 1, TaskType.PEOPLE_SCORE: 4}


def run_analysis(
    task_type: TaskType,
    buffer: PixelBuffer,
    options: AnalysisOptions,
) -> float | FrameAnalysisResult:
    """Compute one task locally; used by the worker process and by fallback paths."""

    if task_type is TaskType.STATIC_SCORE:
        return static_score(buffer, options.sample_rate)
    if task_type is TaskType.SUBTITLE_SCORE:
        return subtitle_score(buffer, options.subtitle_detection_strength, options.subtitle_variant)
    if task_type is TaskType.PEOPLE_SCORE:
        return people_score(buffer, options.sample_rate)
    if task_type is TaskType.BATCH_ANALYSIS:
        return batch_analyze(buffer, options)
    raise ValueError(f"Unsupported analysis type: {task_type}")


def handle_message(message: dict[str, Any]) -> dict[str, Any]:
    """Answer one request dict from the dispatcher."""

    task_id = message.get("taskId") if isinstance(message, dict) else None
    try:
        message_type = message.get("type")
        if message_type == TaskType.TEST.value:
            logger.debug("Received self-test message %s", task_id)
            return {"type": message_type, "result": "ok", "taskId": task_id}

        buffer = _decode_buffer(message)
        if buffer is None:
            return {"error": "invalid image data", "taskId": task_id}

        try:
            task_type = TaskType(message_type)
        except ValueError:
            return {"error": "unsupported analysis type", "taskId": task_id}

        raw_options = dict(message.get("options") or {})
        if task_type in DEFAULT_SAMPLE_RATES and raw_options.get("sampleRate") is None:
            raw_options["sampleRate"] = DEFAULT_SAMPLE_RATES[task_type]
        options = AnalysisOptions.from_payload(raw_options)
        return _answer(task_type, buffer, options, task_id)
    except Exception as exc:
        logger.exception("Failed to process message %s", task_id)
        return {"error": f"failed to process message: {exc}", "taskId": task_id}


def worker_main(requests: Any, responses: Any, log_level: str = "INFO") -> None:
    """Entry point of the background process: answer requests until a ``None`` sentinel."""

    configure_worker_logging(log_level)
    responses.put({"type": "workerLoaded", "status": "ready"})
    while True:
        message = requests.get()
        if message is None:
            break
        responses.put(handle_message(message))
    logger.debug("Background analysis worker stopped.")


def _answer(task_type: TaskType, buffer: PixelBuffer, options: AnalysisOptions, task_id: str | None) -> dict[str, Any]:
    try:
        outcome = run_analysis(task_type, buffer, options)
    except Exception as exc:
        logger.exception("%s failed for task %s", task_type.value, task_id)
        if task_type is TaskType.BATCH_ANALYSIS:
            return {
                "type": task_type.value,
                "error": f"batch analysis failed: {exc}",
                "results": FrameAnalysisResult.neutral().to_payload(),
                "taskId": task_id,
            }
        return {
            "type": task_type.value,
            "error": f"{task_type.value} failed: {exc}",
            "score": NEUTRAL_SCORE,
            "taskId": task_id,
        }

    if isinstance(outcome, FrameAnalysisResult):
        return {"type": task_type.value, "results": outcome.to_payload(), "taskId": task_id}
    return {"type": task_type.value, "score": outcome, "taskId": task_id}


def _decode_buffer(message: dict[str, Any]) -> PixelBuffer | None:
    data = message.get("pixelBuffer")
    width = message.get("width")
    height = message.get("height")
    if data is None or not width or not height:
        return None
    return PixelBuffer(data=data, width=int(width), height=int(height))
