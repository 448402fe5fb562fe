from __future__ import annotations

from pathlib import Path

import pytest

from src.config import Settings, load_settings

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_default_config_file_matches_model_defaults() -> None:
    settings = load_settings(REPO_ROOT / "configs" / "default.yaml")

    assert settings.model_dump(mode="json") == Settings().model_dump(mode="json")


def test_yaml_values_override_defaults(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("selection:\n  count: 5\nanalysis:\n  subtitle_variant: simple\n", encoding="utf-8")

    settings = load_settings(config)

    assert settings.selection.count == 5
    assert settings.analysis.subtitle_variant == "simple"
    assert settings.cache.max_entries == 100


def test_environment_overrides_are_coerced(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("", encoding="utf-8")

    with pytest.MonkeyPatch.context() as monkeypatch:
        monkeypatch.setenv("FRAME_SELECT_DISPATCHER__USE_BACKGROUND", "false")
        monkeypatch.setenv("FRAME_SELECT_CACHE__TTL_SECONDS", "12.5")
        monkeypatch.setenv("FRAME_SELECT_SELECTION__MAX_CANDIDATES", "10")
        monkeypatch.setenv("FRAME_SELECT_SAMPLER__SEED", "42")
        monkeypatch.setenv("FRAME_SELECT_UNKNOWN__KEY", "ignored")
        settings = load_settings(config)

    assert settings.dispatcher.use_background is False
    assert settings.cache.ttl_seconds == pytest.approx(12.5)
    assert settings.selection.max_candidates == 10
    assert settings.sampler.seed == 42


def test_config_path_can_come_from_environment(tmp_path: Path) -> None:
    config = tmp_path / "env.yaml"
    config.write_text("pool:\n  max_size: 2\n", encoding="utf-8")

    with pytest.MonkeyPatch.context() as monkeypatch:
        monkeypatch.setenv("FRAME_SELECT_CONFIG", str(config))
        settings = load_settings()

    assert settings.pool.max_size == 2


def test_package_discovery_includes_namespace_packages() -> None:
    tomllib = pytest.importorskip("tomllib")

    with (REPO_ROOT / "pyproject.toml").open("rb") as handle:
        project = tomllib.load(handle)

    find = project["tool"]["setuptools"]["packages"]["find"]
    assert find == {"where": ["."], "include": ["src*"], "namespaces": True}
    assert project["project"]["scripts"]["frame-select"] == "src.cli:app"
