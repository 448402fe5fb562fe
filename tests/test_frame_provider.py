from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from src.analysis.pool import CanvasPool
from src.ingest.frame_provider import VideoFrameProvider, is_valid_pixel_buffer, scaled_dimensions
from src.models import PixelBuffer


class _FakeCapture:
    def __init__(self, frames: dict[int, np.ndarray], fps: float, width: int, height: int, opened: bool = True) -> None:
        self.frames = frames
        self.props = {"fps": fps, "width": width, "height": height, "count": float(len(frames))}
        self.opened = opened
        self.position_ms = 0.0
        self.released = False

    def isOpened(self) -> bool:
        return self.opened

    def get(self, prop: int) -> float:
        return {
            _FakeCv2.CAP_PROP_FPS: self.props["fps"],
            _FakeCv2.CAP_PROP_FRAME_WIDTH: self.props["width"],
            _FakeCv2.CAP_PROP_FRAME_HEIGHT: self.props["height"],
            _FakeCv2.CAP_PROP_FRAME_COUNT: self.props["count"],
        }[prop]

    def set(self, prop: int, value: float) -> bool:
        assert prop == _FakeCv2.CAP_PROP_POS_MSEC
        self.position_ms = value
        return True

    def read(self):
        index = int(self.position_ms / 1000.0 * self.props["fps"])
        frame = self.frames.get(index)
        return (frame is not None), frame

    def release(self) -> None:
        self.released = True


class _FakeCv2:
    CAP_PROP_POS_MSEC = 0
    CAP_PROP_FRAME_WIDTH = 3
    CAP_PROP_FRAME_HEIGHT = 4
    CAP_PROP_FPS = 5
    CAP_PROP_FRAME_COUNT = 7
    INTER_AREA = 3
    COLOR_BGR2RGBA = 2

    def __init__(self, capture: _FakeCapture) -> None:
        self.capture = capture
        self.resized_to: tuple[int, int] | None = None

    def VideoCapture(self, path: str) -> _FakeCapture:
        return self.capture

    def resize(self, frame, dims, interpolation):
        self.resized_to = dims
        width, height = dims
        return frame[:height, :width]

    def cvtColor(self, frame, code):
        assert code == self.COLOR_BGR2RGBA
        rgba = np.empty(frame.shape[:2] + (4,), dtype=np.uint8)
        rgba[..., 0] = frame[..., 2]
        rgba[..., 1] = frame[..., 1]
        rgba[..., 2] = frame[..., 0]
        rgba[..., 3] = 255
        return rgba


def _video(tmp_path: Path) -> Path:
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"not really a video")
    return path


def _bgr(width: int, height: int, bgr: tuple[int, int, int]) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[...] = bgr
    return frame


def test_provider_reads_duration_and_converts_to_rgba(tmp_path: Path) -> None:
    capture = _FakeCapture({index: _bgr(8, 6, (10, 20, 200)) for index in range(50)}, fps=10.0, width=8, height=6)
    pool = CanvasPool()

    with VideoFrameProvider(_video(tmp_path), pool=pool, cv2_module=_FakeCv2(capture)) as provider:
        assert provider.duration_seconds == pytest.approx(5.0)
        buffer = provider.read_frame(1.0)

    assert (buffer.width, buffer.height) == (8, 6)
    assert buffer.as_array()[0, 0].tolist() == [200, 20, 10, 255]
    assert capture.position_ms == pytest.approx(1000.0)
    assert capture.released
    assert len(pool) == 1


def test_provider_scales_down_large_frames(tmp_path: Path) -> None:
    capture = _FakeCapture({0: _bgr(400, 200, (0, 0, 0))}, fps=1.0, width=400, height=200)
    fake_cv2 = _FakeCv2(capture)

    provider = VideoFrameProvider(_video(tmp_path), max_dimension=100, cv2_module=fake_cv2)
    buffer = provider.read_frame(0.0)

    assert fake_cv2.resized_to == (100, 50)
    assert (buffer.width, buffer.height) == (100, 50)


def test_provider_raises_on_failed_seek(tmp_path: Path) -> None:
    capture = _FakeCapture({0: _bgr(4, 4, (1, 1, 1))}, fps=1.0, width=4, height=4)
    provider = VideoFrameProvider(_video(tmp_path), cv2_module=_FakeCv2(capture))

    with pytest.raises(RuntimeError, match="Seek failed"):
        provider.read_frame(3.0)


def test_provider_rejects_missing_or_unopenable_video(tmp_path: Path) -> None:
    capture = _FakeCapture({}, fps=1.0, width=4, height=4, opened=False)

    with pytest.raises(ValueError, match="not found"):
        VideoFrameProvider(tmp_path / "missing.mp4", cv2_module=_FakeCv2(capture))
    with pytest.raises(RuntimeError, match="Unable to open"):
        VideoFrameProvider(_video(tmp_path), cv2_module=_FakeCv2(capture))


def test_scaled_dimensions() -> None:
    assert scaled_dimensions(1920, 1080, max_dimension=1280) == (1280, 720)
    assert scaled_dimensions(640, 480, max_dimension=1280) == (640, 480)
    assert scaled_dimensions(1920, 1080, max_dimension=1280, keep_original_resolution=True) == (1920, 1080)


def test_pixel_buffer_validation() -> None:
    visible = PixelBuffer.from_array(np.full((4, 4, 3), 90, dtype=np.uint8))
    black = PixelBuffer.from_array(np.zeros((4, 4, 3), dtype=np.uint8))
    transparent = PixelBuffer.from_array(np.full((4, 4, 4), (90, 90, 90, 0), dtype=np.uint8))
    truncated = PixelBuffer(data=np.full(30, 90, dtype=np.uint8), width=4, height=4)

    assert is_valid_pixel_buffer(visible)
    assert not is_valid_pixel_buffer(black)
    assert not is_valid_pixel_buffer(transparent)
    assert not is_valid_pixel_buffer(truncated)
