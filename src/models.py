from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

NEUTRAL_SCORE = 0.5


@dataclass(frozen=True, slots=True, eq=False)
class PixelBuffer:
    """Immutable RGBA frame: ``width * height * 4`` bytes in row-major order.

    The buffer may be shorter than its declared dimensions (truncated decode);
    consumers only read complete rows.
    """

    data: np.ndarray
    width: int
    height: int

    def __post_init__(self) -> None:
        flat = np.array(self.data, dtype=np.uint8, copy=True).reshape(-1)
        flat.setflags(write=False)
        object.__setattr__(self, "data", flat)

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> PixelBuffer:
        """Build a buffer from an ``(h, w, 4)`` RGBA or ``(h, w, 3)`` RGB array."""

        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"Expected an (h, w, 3|4) array, got shape {pixels.shape}.")
        if pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
            pixels = np.concatenate([pixels.astype(np.uint8), alpha], axis=2)
        height, width = pixels.shape[:2]
        return cls(data=pixels, width=int(width), height=int(height))

    @classmethod
    def from_bytes(cls, raw: bytes | bytearray, width: int, height: int) -> PixelBuffer:
        return cls(data=np.frombuffer(bytes(raw), dtype=np.uint8), width=width, height=height)

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0 or self.complete_rows == 0

    @property
    def complete_rows(self) -> int:
        if self.width <= 0:
            return 0
        return min(self.height, int(self.data.size) // (self.width * 4))

    def clone(self) -> PixelBuffer:
        return PixelBuffer(data=self.data.copy(), width=self.width, height=self.height)

    def as_array(self) -> np.ndarray:
        """Return the complete rows as a read-only ``(rows, width, 4)`` view."""

        rows = self.complete_rows
        return self.data[: rows * self.width * 4].reshape(rows, self.width, 4)


@dataclass(frozen=True, slots=True)
class AnalysisOptions:
    """Scoring knobs passed by value to every extraction call."""

    sample_rate: int = 2
    subtitle_detection_strength: float = 0.8
    static_frame_threshold: float = 0.8
    simplified_analysis: bool = False
    subtitle_variant: str = "rich"

    @classmethod
    def from_settings(cls, settings: Any) -> AnalysisOptions:
        return cls(
            sample_rate=int(settings.sample_rate),
            subtitle_detection_strength=float(settings.subtitle_detection_strength),
            static_frame_threshold=float(settings.static_frame_threshold),
            simplified_analysis=bool(settings.simplified_analysis),
            subtitle_variant=str(settings.subtitle_variant),
        )

    @property
    def effective_sample_rate(self) -> int:
        rate = max(1, int(self.sample_rate))
        return max(rate, 4) if self.simplified_analysis else rate

    def to_payload(self) -> dict[str, Any]:
        return {
            "sampleRate": self.sample_rate,
            "subtitleDetectionStrength": self.subtitle_detection_strength,
            "staticFrameThreshold": self.static_frame_threshold,
            "simplifiedAnalysis": self.simplified_analysis,
            "subtitleVariant": self.subtitle_variant,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> AnalysisOptions:
        payload = payload or {}
        defaults = cls()

        def _value(key: str, default: Any) -> Any:
            value = payload.get(key)
            return default if value is None else value

        return cls(
            sample_rate=int(_value("sampleRate", defaults.sample_rate)),
            subtitle_detection_strength=float(
                _value("subtitleDetectionStrength", defaults.subtitle_detection_strength)
            ),
            static_frame_threshold=float(_value("staticFrameThreshold", defaults.static_frame_threshold)),
            simplified_analysis=bool(_value("simplifiedAnalysis", False)),
            subtitle_variant=str(_value("subtitleVariant", defaults.subtitle_variant)),
        )


@dataclass(slots=True, eq=False)
class FrameDiagnostics:
    """Optional by-products of a full batch analysis."""

    edge_map: np.ndarray
    dominant_colors: list[float]
    color_variety: float


@dataclass(slots=True)
class FrameAnalysisResult:
    """Normalized per-frame scores, every field in ``[0, 1]``."""

    static_score: float = NEUTRAL_SCORE
    subtitle_score: float = NEUTRAL_SCORE
    people_score: float = NEUTRAL_SCORE
    empty_frame_score: float = NEUTRAL_SCORE
    diversity_score: float | None = None
    diagnostics: FrameDiagnostics | None = None

    @classmethod
    def neutral(cls) -> FrameAnalysisResult:
        return cls(diversity_score=NEUTRAL_SCORE)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "staticScore": self.static_score,
            "subtitleScore": self.subtitle_score,
            "peopleScore": self.people_score,
            "emptyFrameScore": self.empty_frame_score,
        }
        if self.diversity_score is not None:
            payload["diversityScore"] = self.diversity_score
        if self.diagnostics is not None:
            payload["edgeMap"] = self.diagnostics.edge_map
            payload["colorProfile"] = {
                "dominantColors": list(self.diagnostics.dominant_colors),
                "colorVariety": self.diagnostics.color_variety,
            }
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> FrameAnalysisResult:
        diagnostics = None
        if payload.get("edgeMap") is not None and payload.get("colorProfile") is not None:
            profile = payload["colorProfile"]
            diagnostics = FrameDiagnostics(
                edge_map=np.asarray(payload["edgeMap"], dtype=np.uint8),
                dominant_colors=[float(value) for value in profile.get("dominantColors", [])],
                color_variety=float(profile.get("colorVariety", 0.0)),
            )
        diversity = payload.get("diversityScore")
        return cls(
            static_score=clamp_score(payload.get("staticScore")),
            subtitle_score=clamp_score(payload.get("subtitleScore")),
            people_score=clamp_score(payload.get("peopleScore")),
            empty_frame_score=clamp_score(payload.get("emptyFrameScore")),
            diversity_score=clamp_score(diversity) if diversity is not None else None,
            diagnostics=diagnostics,
        )

    def as_dict(self) -> dict[str, float | None]:
        return {
            "static_score": self.static_score,
            "subtitle_score": self.subtitle_score,
            "people_score": self.people_score,
            "empty_frame_score": self.empty_frame_score,
            "diversity_score": self.diversity_score,
        }


class TaskType(str, Enum):
    TEST = "test"
    STATIC_SCORE = "staticScore"
    SUBTITLE_SCORE = "subtitleScore"
    PEOPLE_SCORE = "peopleScore"
    BATCH_ANALYSIS = "batchAnalysis"


@dataclass(slots=True)
class AnalysisTask:
    """A unit of work owned by the dispatcher while it is pending."""

    task_id: str
    type: TaskType
    buffer: PixelBuffer | None
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    timeout_seconds: float = 30.0

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"type": self.type.value, "taskId": self.task_id}
        if self.buffer is not None:
            message["pixelBuffer"] = self.buffer.data
            message["width"] = self.buffer.width
            message["height"] = self.buffer.height
            message["options"] = self.options.to_payload()
        return message


@dataclass(slots=True)
class CacheEntry:
    fingerprint: str
    timestamp: float
    result: FrameAnalysisResult


@dataclass(slots=True)
class CandidateFrame:
    """A scored frame eligible for selection; ``index`` is its chronological position."""

    index: int
    scores: FrameAnalysisResult
    total_score: float = 0.0


@dataclass(frozen=True, slots=True)
class SelectionPreferences:
    prioritize_static: bool = False
    avoid_subtitles: bool = False
    prefer_people: bool = False
    prefer_faces: bool = False
    avoid_empty_frames: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> SelectionPreferences:
        return cls(
            prioritize_static=bool(settings.prioritize_static),
            avoid_subtitles=bool(settings.avoid_subtitles),
            prefer_people=bool(settings.prefer_people),
            prefer_faces=bool(settings.prefer_faces),
            avoid_empty_frames=bool(settings.avoid_empty_frames),
        )

    @property
    def any_active(self) -> bool:
        return (
            self.prioritize_static
            or self.avoid_subtitles
            or self.prefer_people
            or self.prefer_faces
            or self.avoid_empty_frames
        )


@dataclass(slots=True)
class SampledFrame:
    """A decoded frame paired with the timestamp it was requested at."""

    timestamp_seconds: float
    buffer: PixelBuffer


def clamp_score(value: Any) -> float:
    if value is None:
        return NEUTRAL_SCORE
    numeric = float(value)
    if not np.isfinite(numeric):
        return NEUTRAL_SCORE
    return max(0.0, min(1.0, numeric))
