from __future__ import annotations

import csv
import json

import numpy as np
import pytest

from src.models import CandidateFrame, FrameAnalysisResult, PixelBuffer
from src.selection.exporter import (
    build_selection_manifest,
    export_final_outputs,
    export_selection,
)


def _selected() -> list[CandidateFrame]:
    return [
        CandidateFrame(
            index=1,
            scores=FrameAnalysisResult(
                static_score=0.82,
                subtitle_score=0.05,
                people_score=0.9,
                empty_frame_score=0.1,
                diversity_score=0.6,
            ),
            total_score=5.123456,
        ),
        CandidateFrame(
            index=3,
            scores=FrameAnalysisResult(
                static_score=0.4,
                subtitle_score=0.45,
                people_score=0.2,
                empty_frame_score=0.5,
            ),
            total_score=2.5,
        ),
    ]


def test_manifest_rows_carry_rank_timestamp_and_summary() -> None:
    rows = build_selection_manifest(_selected(), timestamps=[0.0, 4.25, 9.0, 13.5])

    assert [row["rank"] for row in rows] == [1, 2]
    assert rows[0]["timestamp_seconds"] == 4.25
    assert rows[0]["total_score"] == 5.1235
    assert rows[0]["summary"] == "people, no subtitles, still"
    assert rows[1]["summary"] == "no strong signals"
    assert rows[1]["diversity_score"] is None


def test_manifest_without_timestamps_leaves_them_empty() -> None:
    rows = build_selection_manifest(_selected())

    assert all(row["timestamp_seconds"] is None for row in rows)


def test_export_selection_json_creates_parent_directories(tmp_path) -> None:
    out = export_selection(_selected(), tmp_path / "nested" / "selection.json")

    payload = json.loads(out.read_text(encoding="utf-8"))

    assert isinstance(payload, list)
    assert [row["index"] for row in payload] == [1, 3]
    assert payload[0]["people_score"] == pytest.approx(0.9)
    assert payload[1]["diversity_score"] is None


def test_export_selection_csv_has_score_columns(tmp_path) -> None:
    out = export_selection(_selected(), tmp_path / "selection.csv", timestamps=[0.0, 1.0, 2.0, 3.0])

    with out.open(encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert rows[0]["index"] == "1"
    assert rows[0]["people_score"] == "0.9"
    assert rows[1]["diversity_score"] == ""
    assert rows[1]["timestamp_seconds"] == "3.0"


def test_export_final_outputs_writes_manifests_and_images(tmp_path) -> None:
    frames = [PixelBuffer.from_array(np.full((8, 10, 3), value, dtype=np.uint8)) for value in (10, 60, 120, 200)]

    outputs = export_final_outputs(_selected(), tmp_path, basename="clip", frames=frames)

    assert outputs["json"].exists()
    assert outputs["csv"].exists()
    assert outputs["frame_1"].name == "clip_01_frame0001.png"
    assert outputs["frame_2"].exists()
