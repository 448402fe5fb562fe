from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from src.analysis.processor import FrameProcessor
from src.config import Settings, load_settings
from src.ingest.extract_frames import ExtractionReport
from src.logging_config import configure_logging
from src.models import PixelBuffer, SelectionPreferences
from src.sampling.frame_sampler import sample_timestamps
from src.sampling.similarity import frame_similarity, is_similar
from src.selection.exporter import build_selection_manifest, export_final_outputs

app = typer.Typer(help="Frame quality analysis and optimal frame selection.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION_HELP = "Path to YAML configuration file."


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _load_image(image_path: Path) -> PixelBuffer:
    import cv2

    resolved = image_path.expanduser().resolve()
    if not resolved.exists():
        raise ValueError(f"Image file not found: {resolved}")
    image = cv2.imread(str(resolved), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError(f"Unable to decode image: {resolved}")
    return PixelBuffer.from_array(cv2.cvtColor(image, cv2.COLOR_BGR2RGBA))


def _fail(exc: Exception, context: str) -> typer.Exit:
    logger.error("%s: %s", context, exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="FRAME_SELECT_CONFIG",
        help=CONFIG_OPTION_HELP,
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command()
def analyze(
    image_path: Path = typer.Argument(..., help="Image file to score."),
    simplified: bool = typer.Option(False, help="Skip diagnostics and sample at a coarser stride."),
    sample_rate: int | None = typer.Option(None, help="Pixel sampling stride; defaults to the configured value."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="FRAME_SELECT_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Score one image and print the analysis result as JSON."""

    settings = _bootstrap(config_path)
    try:
        buffer = _load_image(image_path)
        with FrameProcessor(settings) as processor:
            options = replace(
                processor.options,
                simplified_analysis=simplified or processor.options.simplified_analysis,
                sample_rate=sample_rate or processor.options.sample_rate,
            )
            result = processor.analyze(buffer, options)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc, "Analysis failed") from exc

    payload = result.to_payload()
    edges = payload.pop("edgeMap", None)
    if edges is not None:
        payload["edgeMapShape"] = list(edges.shape)
        payload["edgeDensity"] = round(float((edges > 0).mean()), 4) if edges.size else 0.0
    payload["image"] = str(image_path)
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def sample(
    duration: float = typer.Argument(..., help="Video duration in seconds."),
    count: int | None = typer.Option(None, help="Number of timestamps to sample."),
    start: float = typer.Option(0.0, help="Start time in seconds."),
    mode: str | None = typer.Option(None, help="Sampling mode: uniform, random or keyframes."),
    seed: int | None = typer.Option(None, help="Random seed for reproducible sampling."),
    no_diversity: bool = typer.Option(False, "--no-diversity", help="Disable diversity-enhanced spacing."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="FRAME_SELECT_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Print the timestamps that frame extraction would request."""

    settings = _bootstrap(config_path)
    sampler = settings.sampler
    resolved_mode = mode or sampler.mode
    try:
        timestamps = sample_timestamps(
            duration,
            min(count if count is not None else sampler.frame_count, sampler.max_frame_count),
            start_time=start,
            mode=resolved_mode,
            diversity_enhanced=sampler.diversity_enhanced and not no_diversity,
            seed=seed if seed is not None else sampler.seed,
        )
    except ValueError as exc:
        raise _fail(exc, "Sampling failed") from exc

    typer.echo(
        json.dumps(
            {"duration": duration, "mode": resolved_mode, "timestamps": [round(point, 3) for point in timestamps]},
            indent=2,
        )
    )


@app.command()
def compare(
    first_image: Path = typer.Argument(..., help="First image file."),
    second_image: Path = typer.Argument(..., help="Second image file."),
    threshold: float | None = typer.Option(None, help="Duplicate threshold; defaults to the configured value."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="FRAME_SELECT_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Compare two images and print whether they count as near-duplicates."""

    settings = _bootstrap(config_path)
    resolved_threshold = settings.selection.duplicate_threshold if threshold is None else threshold
    try:
        first = _load_image(first_image)
        second = _load_image(second_image)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc, "Comparison failed") from exc

    typer.echo(
        json.dumps(
            {
                "threshold": resolved_threshold,
                "similar": is_similar(first, second, resolved_threshold),
                "similarity": round(frame_similarity(first, second), 4),
            },
            indent=2,
        )
    )


@app.command("select")
def select_frames(
    video_path: Path = typer.Argument(..., help="Video file to pick frames from."),
    count: int | None = typer.Option(None, help="Number of frames to select."),
    frame_count: int | None = typer.Option(None, help="Number of candidate frames to extract."),
    mode: str | None = typer.Option(None, help="Sampling mode: uniform, random or keyframes."),
    seed: int | None = typer.Option(None, help="Random seed for reproducible sampling."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for JSON/CSV/image outputs."),
    basename: str | None = typer.Option(None, help="Base filename for exported artifacts."),
    write_images: bool = typer.Option(True, help="Write one image per selected frame."),
    prioritize_static: bool | None = typer.Option(None, "--static/--no-static", help="Prefer still frames."),
    avoid_subtitles: bool | None = typer.Option(None, "--avoid-subtitles/--allow-subtitles", help="Penalise subtitled frames."),
    prefer_people: bool | None = typer.Option(None, "--people/--no-people", help="Prefer frames with people."),
    prefer_faces: bool | None = typer.Option(None, "--faces/--no-faces", help="Weight people strongly."),
    avoid_empty_frames: bool | None = typer.Option(None, "--avoid-empty/--allow-empty", help="Penalise empty frames."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="FRAME_SELECT_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Extract candidate frames from a video, select the best ones and export them."""

    settings = _bootstrap(config_path)
    resolved_video_path = video_path.expanduser().resolve()
    defaults = SelectionPreferences.from_settings(settings.selection)
    preferences = SelectionPreferences(
        prioritize_static=defaults.prioritize_static if prioritize_static is None else prioritize_static,
        avoid_subtitles=defaults.avoid_subtitles if avoid_subtitles is None else avoid_subtitles,
        prefer_people=defaults.prefer_people if prefer_people is None else prefer_people,
        prefer_faces=defaults.prefer_faces if prefer_faces is None else prefer_faces,
        avoid_empty_frames=defaults.avoid_empty_frames if avoid_empty_frames is None else avoid_empty_frames,
    )
    total_steps = 3
    report = ExtractionReport()

    try:
        with FrameProcessor(settings) as processor:
            sampled = _run_with_progress(
                1,
                total_steps,
                "Extract candidate frames",
                lambda: processor.extract_frames(
                    resolved_video_path,
                    frame_count=frame_count,
                    mode=mode,
                    seed=seed,
                    report=report,
                ),
            )
            buffers = [frame.buffer for frame in sampled]
            selected = _run_with_progress(
                2,
                total_steps,
                "Analyze and select frames",
                lambda: processor.find_optimal_frames(buffers, count=count, preferences=preferences),
            )
            timestamps = [frame.timestamp_seconds for frame in sampled]
            exported = _run_with_progress(
                3,
                total_steps,
                "Export outputs",
                lambda: export_final_outputs(
                    selected,
                    output_dir or settings.pipeline.output_dir,
                    basename=basename or f"{resolved_video_path.stem}_selection",
                    frames=buffers if write_images else None,
                    timestamps=timestamps,
                ),
            )
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc, "Frame selection failed") from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "video_path": str(resolved_video_path),
                "extracted": len(sampled),
                "skipped": report.skipped,
                "failed": report.failed,
                "selected": build_selection_manifest(selected, timestamps),
                "outputs": {key: str(value) for key, value in exported.items()},
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
