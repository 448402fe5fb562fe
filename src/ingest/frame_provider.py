from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from src.analysis.pool import CanvasPool
from src.models import PixelBuffer

logger = logging.getLogger(__name__)

MAX_VALIDATION_SAMPLES = 8000


class FrameProvider(Protocol):
    duration_seconds: float
    width: int
    height: int

    def read_frame(self, timestamp_seconds: float) -> PixelBuffer: ...

    def close(self) -> None: ...


class VideoFrameProvider:
    """Decode RGBA frames at requested timestamps with OpenCV.

    Frames larger than ``max_dimension`` on either side are scaled down unless
    the original resolution is requested. Decoded BGR frames are converted on
    a pooled canvas before being copied into an immutable ``PixelBuffer``.
    """

    def __init__(
        self,
        video_path: str | Path,
        *,
        max_dimension: int = 1280,
        keep_original_resolution: bool = False,
        pool: CanvasPool | None = None,
        cv2_module: Any | None = None,
    ) -> None:
        source_path = Path(video_path).expanduser().resolve()
        if not source_path.exists():
            raise ValueError(f"Video file not found: {source_path}")

        if cv2_module is None:
            import cv2

            cv2_module = cv2

        self._cv2 = cv2_module
        self.path = source_path
        self.pool = pool or CanvasPool()
        self._capture = cv2_module.VideoCapture(str(source_path))
        if not self._capture.isOpened():
            raise RuntimeError(f"Unable to open video for frame extraction: {source_path}")

        self.source_width = int(self._capture.get(cv2_module.CAP_PROP_FRAME_WIDTH) or 0)
        self.source_height = int(self._capture.get(cv2_module.CAP_PROP_FRAME_HEIGHT) or 0)
        fps = float(self._capture.get(cv2_module.CAP_PROP_FPS) or 0.0)
        frame_total = float(self._capture.get(cv2_module.CAP_PROP_FRAME_COUNT) or 0.0)
        self.duration_seconds = frame_total / fps if fps > 0 else 0.0
        self.width, self.height = scaled_dimensions(
            self.source_width,
            self.source_height,
            max_dimension=max_dimension,
            keep_original_resolution=keep_original_resolution,
        )

    def read_frame(self, timestamp_seconds: float) -> PixelBuffer:
        cv2 = self._cv2
        self._capture.set(cv2.CAP_PROP_POS_MSEC, max(0.0, timestamp_seconds) * 1000.0)
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise RuntimeError(f"Seek failed at {timestamp_seconds:.1f}s")
        if self.width <= 0 or self.height <= 0:
            raise RuntimeError(f"Invalid output dimensions: {self.width}x{self.height}")

        if frame.shape[1] != self.width or frame.shape[0] != self.height:
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_AREA)

        canvas = self.pool.acquire(self.width, self.height)
        try:
            canvas[...] = cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)
            return PixelBuffer(data=canvas, width=self.width, height=self.height)
        finally:
            self.pool.release(canvas)

    def close(self) -> None:
        self._capture.release()

    def __enter__(self) -> VideoFrameProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def scaled_dimensions(
    width: int,
    height: int,
    *,
    max_dimension: int = 1280,
    keep_original_resolution: bool = False,
) -> tuple[int, int]:
    if keep_original_resolution or max_dimension <= 0 or max(width, height) <= max_dimension:
        return width, height
    scale = max_dimension / max(width, height)
    return int(width * scale), int(height * scale)


def is_valid_pixel_buffer(
    buffer: PixelBuffer,
    *,
    content_threshold: int = 5,
    min_opaque_ratio: float = 0.1,
) -> bool:
    """Reject frames with a wrong byte length, mostly transparent pixels, or no visible content."""

    if buffer.width <= 0 or buffer.height <= 0:
        return False
    if buffer.data.size != buffer.width * buffer.height * 4:
        return False

    step = max(1, buffer.data.size // MAX_VALIDATION_SAMPLES)
    samples = buffer.data.reshape(-1, 4)[::step].astype(np.float64)
    opaque = samples[:, 3] > 0
    opaque_ratio = float(opaque.mean())
    if opaque_ratio < min_opaque_ratio:
        logger.debug("Rejected frame: opaque ratio %.1f%%", opaque_ratio * 100)
        return False

    visible = samples[opaque, :3]
    has_content = bool((visible > content_threshold).any())
    brightness = visible @ np.array([0.299, 0.587, 0.114]) if visible.size else np.zeros(0)
    average_brightness = float(brightness.sum()) / samples.shape[0]
    if not has_content and average_brightness < content_threshold:
        logger.debug("Rejected frame: too dark (average brightness %.1f)", average_brightness)
        return False
    return True
