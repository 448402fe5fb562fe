from __future__ import annotations

import csv
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from src.models import CandidateFrame, FrameAnalysisResult, PixelBuffer

SCORE_FIELDS = ("static_score", "subtitle_score", "people_score", "empty_frame_score", "diversity_score")


def export_selection(
    selected: Sequence[CandidateFrame],
    output_path: str | Path,
    timestamps: Sequence[float] | None = None,
) -> Path:
    """Export selected frames to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = build_selection_manifest(selected, timestamps)

    if path.suffix.lower() == ".csv":
        _write_csv(rows, path)
    else:
        path.write_text(json.dumps(rows, indent=2), encoding="utf-8")
    return path


def export_final_outputs(
    selected: Sequence[CandidateFrame],
    output_dir: str | Path,
    *,
    basename: str = "selection",
    frames: Sequence[PixelBuffer] | None = None,
    timestamps: Sequence[float] | None = None,
    image_format: str = "png",
) -> dict[str, Path]:
    """Write the JSON/CSV manifests and, when frames are given, one image per selected frame."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    outputs = {
        "json": export_selection(selected, resolved_output_dir / f"{basename}.json", timestamps),
        "csv": export_selection(selected, resolved_output_dir / f"{basename}.csv", timestamps),
    }
    if frames is not None:
        for rank, candidate in enumerate(selected, start=1):
            if not 0 <= candidate.index < len(frames):
                continue
            image_path = resolved_output_dir / f"{basename}_{rank:02d}_frame{candidate.index:04d}.{image_format}"
            write_frame_image(frames[candidate.index], image_path)
            outputs[f"frame_{rank}"] = image_path
    return outputs


def build_selection_manifest(
    selected: Sequence[CandidateFrame],
    timestamps: Sequence[float] | None = None,
) -> list[dict[str, Any]]:
    """One row per selected frame with scores and a short human-readable summary."""

    manifest: list[dict[str, Any]] = []
    for rank, candidate in enumerate(selected, start=1):
        entry: dict[str, Any] = {
            "rank": rank,
            "index": candidate.index,
            "timestamp_seconds": _timestamp_for(candidate.index, timestamps),
            "total_score": round(candidate.total_score, 4),
            "summary": _selection_summary(candidate.scores),
        }
        entry.update({name: _rounded(value) for name, value in candidate.scores.as_dict().items()})
        manifest.append(entry)
    return manifest


def write_frame_image(buffer: PixelBuffer, path: str | Path) -> Path:
    import cv2

    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    bgr = cv2.cvtColor(buffer.as_array(), cv2.COLOR_RGBA2BGR)
    if not cv2.imwrite(str(output), bgr):
        raise RuntimeError(f"Failed to write frame image: {output}")
    return output


def _write_csv(rows: list[dict[str, Any]], path: Path) -> None:
    fields = ["rank", "index", "timestamp_seconds", "total_score", *SCORE_FIELDS, "summary"]
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for row in rows:
            writer.writerow({field: "" if row.get(field) is None else row[field] for field in fields})


def _timestamp_for(index: int, timestamps: Sequence[float] | None) -> float | None:
    if timestamps is None or not 0 <= index < len(timestamps):
        return None
    return round(float(timestamps[index]), 3)


def _rounded(value: float | None) -> float | None:
    return round(value, 4) if value is not None else None


def _selection_summary(scores: FrameAnalysisResult) -> str:
    tags: list[str] = []
    if scores.people_score > 0.6:
        tags.append("people")
    if scores.subtitle_score < 0.3:
        tags.append("no subtitles")
    elif scores.subtitle_score > 0.6:
        tags.append("likely subtitles")
    if scores.static_score > 0.7:
        tags.append("still")
    if scores.empty_frame_score > 0.7:
        tags.append("possibly empty")
    return ", ".join(tags) if tags else "no strong signals"
