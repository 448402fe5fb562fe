from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "FRAME_SELECT_"


class AnalysisSettings(BaseModel):
    sample_rate: int = 2
    subtitle_detection_strength: float = 0.8
    static_frame_threshold: float = 0.8
    simplified_analysis: bool = False
    subtitle_variant: str = "rich"


class DispatcherSettings(BaseModel):
    use_background: bool = True
    start_method: str = "spawn"
    init_timeout_seconds: float = 5.0
    task_timeout_seconds: float = 30.0
    heavy_task_timeout_seconds: float = 180.0
    max_init_attempts: int = 3
    poll_interval_seconds: float = 0.05


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl_seconds: float = 300.0
    max_entries: int = 100


class PoolSettings(BaseModel):
    max_size: int = 5


class SamplerSettings(BaseModel):
    mode: str = "uniform"
    frame_count: int = 10
    max_frame_count: int = 30
    diversity_enhanced: bool = True
    seed: int | None = None


class SelectionSettings(BaseModel):
    count: int = 3
    duplicate_threshold: float = 0.85
    selection_threshold: float = 0.75
    max_candidates: int = 40
    batch_size: int = 5
    neighborhood: int = 5
    people_threshold: float = 0.6
    subtitle_threshold: float = 0.3
    people_retention: float = 0.7
    people_blend: float = 0.9
    extra_neighbor_analyses: int = 3
    prioritize_static: bool = True
    avoid_subtitles: bool = True
    prefer_people: bool = True
    prefer_faces: bool = False
    avoid_empty_frames: bool = True


class ExtractionSettings(BaseModel):
    max_dimension: int = 1280
    keep_original_resolution: bool = False
    max_retries: int = 2
    retry_delay_seconds: float = 0.1
    content_threshold: int = 5
    min_opaque_ratio: float = 0.1


class PipelineSettings(BaseModel):
    output_dir: Path = Path("data/outputs")


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    dispatcher: DispatcherSettings = Field(default_factory=DispatcherSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    sampler: SamplerSettings = Field(default_factory=SamplerSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML, then apply ``FRAME_SELECT_<SECTION>__<KEY>`` overrides."""

    resolved_path = Path(config_path or os.getenv(f"{ENV_PREFIX}CONFIG") or DEFAULT_CONFIG_PATH)
    raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for section, key, raw_value in _env_overrides(os.environ):
        values = data.get(section)
        if not isinstance(values, dict) or key not in values:
            continue
        values[key] = _coerce_value(raw_value, values[key])

    return Settings.model_validate(data)


def _env_overrides(environ: Mapping[str, str]) -> Iterator[tuple[str, str, str]]:
    for name, raw_value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        section, separator, key = name[len(ENV_PREFIX) :].lower().partition("__")
        if separator and key:
            yield section, key, raw_value


def _coerce_value(raw_value: str, current: Any) -> Any:
    if isinstance(current, bool):
        return raw_value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw_value)
    if isinstance(current, float):
        return float(raw_value)
    if isinstance(current, Path):
        return Path(raw_value)
    if current is None and raw_value.strip().lower() in {"", "none", "null"}:
        return None
    return raw_value
