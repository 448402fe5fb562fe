from __future__ import annotations

import json
from pathlib import Path

import numpy as np
from typer.testing import CliRunner

import src.cli as cli
from src.config import Settings
from src.models import CandidateFrame, FrameAnalysisResult, PixelBuffer, SampledFrame


def _settings(tmp_path: Path) -> Settings:
    settings = Settings()
    settings.dispatcher.use_background = False
    settings.pipeline.output_dir = tmp_path / "outputs"
    return settings


def _buffer(value: int) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((12, 16, 3), value, dtype=np.uint8))


class _FailingProcessor:
    def __init__(self, settings) -> None:
        self.settings = settings

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def extract_frames(self, video_path, **kwargs):
        raise RuntimeError("Unable to open video for frame extraction: broken.mp4")


class _StubProcessor(_FailingProcessor):
    captured: dict = {}

    def extract_frames(self, video_path, **kwargs):
        _StubProcessor.captured["extract"] = kwargs
        return [SampledFrame(timestamp_seconds=float(index), buffer=_buffer(40 * index + 20)) for index in range(4)]

    def find_optimal_frames(self, frames, count=None, preferences=None):
        _StubProcessor.captured["preferences"] = preferences
        return [CandidateFrame(index=1, scores=FrameAnalysisResult(), total_score=1.0)]


def test_select_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "broken.mp4"
    video.write_bytes(b"data")
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _settings(tmp_path))
    monkeypatch.setattr(cli, "FrameProcessor", _FailingProcessor)

    result = CliRunner().invoke(cli.app, ["select", str(video)])

    assert result.exit_code == 1
    assert "[1/3] Extract candidate frames..." in result.output
    assert "[1/3] Extract candidate frames failed" in result.output
    assert "Error: Unable to open video" in result.output
    assert "Traceback" not in result.output


def test_select_shows_progress_for_all_stages(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"data")
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _settings(tmp_path))
    monkeypatch.setattr(cli, "FrameProcessor", _StubProcessor)
    monkeypatch.setattr(
        cli,
        "export_final_outputs",
        lambda selected, output_dir, **kwargs: {"json": Path(output_dir) / f"{kwargs['basename']}.json"},
    )

    result = CliRunner().invoke(
        cli.app,
        ["select", str(video), "--frame-count", "4", "--faces", "--allow-subtitles"],
    )

    assert result.exit_code == 0
    assert "[3/3] Export outputs done" in result.output
    assert '"status": "ok"' in result.output
    assert "clip_selection.json" in result.output
    assert _StubProcessor.captured["extract"]["frame_count"] == 4
    preferences = _StubProcessor.captured["preferences"]
    assert preferences.prefer_faces is True
    assert preferences.avoid_subtitles is False
    assert preferences.prefer_people is True


def test_sample_prints_timestamps(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _settings(tmp_path))

    result = CliRunner().invoke(cli.app, ["sample", "120", "--count", "5", "--seed", "3"])

    assert result.exit_code == 0
    assert '"mode": "uniform"' in result.output
    assert '"timestamps"' in result.output


def test_sample_rejects_unknown_mode(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _settings(tmp_path))

    result = CliRunner().invoke(cli.app, ["sample", "120", "--mode", "scenes"])

    assert result.exit_code == 1
    assert "Error: Unsupported sampler mode" in result.output


def test_analyze_prints_scores(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _settings(tmp_path))
    monkeypatch.setattr(cli, "_load_image", lambda _: _buffer(128))

    result = CliRunner().invoke(cli.app, ["analyze", "frame.png", "--simplified"])

    assert result.exit_code == 0
    assert '"staticScore"' in result.output
    assert '"diversityScore"' in result.output
    assert '"edgeMapShape"' not in result.output
    assert '"edgeMap"' not in result.output


def test_compare_reports_similarity(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _settings(tmp_path))
    images = {"a.png": _buffer(10), "b.png": _buffer(250)}
    monkeypatch.setattr(cli, "_load_image", lambda path: images[Path(path).name])

    result = CliRunner().invoke(cli.app, ["compare", "a.png", "b.png"])

    assert result.exit_code == 0
    assert '"similar": false' in result.output


def test_config_show_dumps_settings(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("selection:\n  count: 7\n", encoding="utf-8")

    result = CliRunner().invoke(cli.app, ["config", "show", "--config", str(config)])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["selection"]["count"] == 7
