"""Tests for the quarry config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from quarry.config import (
    ConfigError,
    QuarryConfig,
    ensure_global_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


def _missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))

    assert cfg.database.path == ".quarry.db"
    assert cfg.ingestion.chunk_size == 200
    assert cfg.ingestion.chunk_overlap == 40
    assert cfg.ingestion.vector_dimensions == 256
    assert cfg.ingestion.embedding_provider == "hash"
    assert ".md" in cfg.ingestion.include_extensions
    assert "node_modules" in cfg.ingestion.exclude_directories
    assert cfg.ingestion.max_file_size_bytes == 1_000_000
    assert cfg.retrieval.default_top_k == 5
    assert cfg.retrieval.max_top_k == 20


def test_defaults_validate() -> None:
    assert QuarryConfig().validate() is not None


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global" / "config.yaml"
    _write_yaml(global_cfg, {"ingestion": {"chunk_size": 300}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.ingestion.chunk_size == 300
    assert cfg.ingestion.chunk_overlap == 40


def test_global_empty_file(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global" / "config.yaml"
    global_cfg.parent.mkdir()
    global_cfg.write_text("", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.ingestion.chunk_size == 200


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global" / "config.yaml"
    _write_yaml(global_cfg, {"ingestion": {"chunk_size": 300, "chunk_overlap": 30}})
    _write_yaml(tmp_path / "quarry.yaml", {"ingestion": {"chunk_size": 120}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)

    assert cfg.ingestion.chunk_size == 120
    assert cfg.ingestion.chunk_overlap == 30


def test_project_lists_replace_defaults(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "quarry.yaml",
        {"ingestion": {"include_extensions": [".MD", ".adoc"], "exclude_directories": "vendor"}},
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))
    assert cfg.ingestion.include_extensions == [".md", ".adoc"]
    assert cfg.ingestion.exclude_directories == ["vendor"]


def test_database_and_retrieval_sections(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "quarry.yaml",
        {"database": {"path": "data/index.db"}, "retrieval": {"default_top_k": 8, "max_top_k": 40}},
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))
    assert cfg.database.path == "data/index.db"
    assert cfg.retrieval.default_top_k == 8
    assert cfg.retrieval.max_top_k == 40


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "quarry.yaml", {"database": {"path": "from-yaml.db"}})
    monkeypatch.setenv("QUARRY_DB_PATH", "from-env.db")
    monkeypatch.setenv("QUARRY_EMBEDDING_MODEL", "cohere/embed-english-v3.0")
    monkeypatch.setenv("QUARRY_VECTOR_DIMENSIONS", "64")

    cfg = load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))

    assert cfg.database.path == "from-env.db"
    assert cfg.ingestion.embedding_model == "cohere/embed-english-v3.0"
    assert cfg.ingestion.vector_dimensions == 64


def test_env_dimensions_not_integer(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUARRY_VECTOR_DIMENSIONS", "wide")
    with pytest.raises(ConfigError, match="QUARRY_VECTOR_DIMENSIONS"):
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("ingestion,fragment", [
    ({"chunk_size": 0}, "chunk_size"),
    ({"chunk_size": 10, "chunk_overlap": 10}, "chunk_overlap"),
    ({"chunk_overlap": -1}, "chunk_overlap"),
    ({"vector_dimensions": 0}, "vector_dimensions"),
    ({"vector_dimensions": 5000}, "vector_dimensions"),
    ({"embedding_provider": "magic"}, "embedding_provider"),
    ({"max_file_size_bytes": 0}, "max_file_size_bytes"),
    ({"include_extensions": ["md"]}, "must start with '.'"),
])
def test_invalid_ingestion_values(tmp_path: Path, ingestion: dict, fragment: str) -> None:
    _write_yaml(tmp_path / "quarry.yaml", {"ingestion": ingestion})
    with pytest.raises(ConfigError, match=fragment):
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))


def test_invalid_retrieval_values(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "quarry.yaml", {"retrieval": {"default_top_k": 30, "max_top_k": 10}})
    with pytest.raises(ConfigError, match="default_top_k"):
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))


def test_validate_collects_all_errors() -> None:
    cfg = QuarryConfig()
    cfg.ingestion.chunk_size = 0
    cfg.retrieval.max_top_k = 0
    with pytest.raises(ConfigError) as exc_info:
        cfg.validate()
    message = str(exc_info.value)
    assert "chunk_size" in message
    assert "max_top_k" in message


def test_non_numeric_value_is_config_error(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "quarry.yaml", {"ingestion": {"chunk_size": "large"}})
    with pytest.raises(ConfigError, match="Invalid configuration value"):
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))


def test_malformed_yaml_is_config_error(tmp_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("ingestion: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Could not parse"):
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))


def test_non_mapping_yaml_is_config_error(tmp_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))


def test_config_error_is_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


# ---------------------------------------------------------------------------
# API-key guard + unknown keys
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("bad_key", ["api_key", "openai_api_key", "token", "auth_token", "password"])
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    global_cfg = tmp_path / "global" / "config.yaml"
    _write_yaml(global_cfg, {bad_key: "sk-xxx"})
    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global" / "config.yaml"
    _write_yaml(global_cfg, {"ingestion": {"api_key": "sk-xxx"}})
    with pytest.raises(ConfigError, match="ingestion.api_key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_allows_top_k_names(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global" / "config.yaml"
    _write_yaml(global_cfg, {"retrieval": {"max_top_k": 30}})
    assert load_config(project_dir=tmp_path, global_config_path=global_cfg).retrieval.max_top_k == 30


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "quarry.yaml", {"telemetry": {"enabled": True}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(project_dir=tmp_path, global_config_path=_missing_global(tmp_path))
    assert any("telemetry" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_file(tmp_path: Path) -> None:
    target = tmp_path / "home" / ".quarry" / "config.yaml"
    path = ensure_global_config(target)
    assert path == target
    data = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert data["ingestion"]["embedding_provider"] == "hash"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600


def test_ensure_global_config_does_not_overwrite(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("ingestion:\n  chunk_size: 99\n", encoding="utf-8")
    ensure_global_config(target)
    assert "99" in target.read_text(encoding="utf-8")


def test_ensure_global_config_output_loads(tmp_path: Path) -> None:
    target = ensure_global_config(tmp_path / "g" / "config.yaml")
    cfg = load_config(project_dir=tmp_path, global_config_path=target)
    assert cfg.ingestion.vector_dimensions == 256
