"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (QUARRY_DB_PATH, QUARRY_EMBEDDING_MODEL,
     QUARRY_VECTOR_DIMENSIONS)
  3. Per-project quarry.yaml
  4. Global ~/.quarry/config.yaml  (no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from quarry.errors import ConfigError

__all__ = [
    "ConfigError",
    "DatabaseCfg",
    "IngestionCfg",
    "QuarryConfig",
    "RetrievalCfg",
    "ensure_global_config",
    "load_config",
]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Leaves max_top_k, chunk_size etc. alone.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(["database", "ingestion", "retrieval"])

_EMBEDDING_PROVIDERS: frozenset[str] = frozenset(["hash", "litellm"])

_MIN_DIMENSIONS, _MAX_DIMENSIONS = 1, 4096
_MIN_CHUNK_SIZE, _MAX_CHUNK_SIZE = 1, 5000
_MIN_FILE_SIZE, _MAX_FILE_SIZE = 1, 100_000_000
_MAX_TOP_K_CEILING = 100


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Storage configuration (quarry.yaml: database:)."""

    path: str = ".quarry.db"


@dataclass
class IngestionCfg:
    """Chunking, embedding and crawl filters (quarry.yaml: ingestion:).

    Attributes:
        chunk_size: Window size in whitespace tokens.
        chunk_overlap: Tokens shared between consecutive windows.
        vector_dimensions: Embedding width; fixed when the index is created.
        embedding_provider: ``hash`` (deterministic, offline) or ``litellm``.
        embedding_model: Model name passed to LiteLLM when the provider is
            ``litellm``; recorded in the sources manifest either way.
        include_extensions: File extensions the directory crawl indexes.
        exclude_directories: Directory names whose subtrees are skipped.
        exclude_file_names: Exact file names treated as generated output.
        exclude_file_suffixes: Name suffixes treated as generated output.
        max_file_size_bytes: Files larger than this are skipped.
    """

    chunk_size: int = 200
    chunk_overlap: int = 40
    vector_dimensions: int = 256
    embedding_provider: str = "hash"
    embedding_model: str = "openai/text-embedding-3-small"
    include_extensions: list[str] = field(
        default_factory=lambda: [
            ".md", ".txt", ".rst", ".py", ".cs", ".json", ".ts", ".tsx",
            ".js", ".yaml", ".yml", ".toml", ".pdf",
        ]
    )
    exclude_directories: list[str] = field(
        default_factory=lambda: [
            ".git", "node_modules", "bin", "obj", "dist", "build", ".next",
            "__pycache__", ".venv", "venv",
        ]
    )
    exclude_file_names: list[str] = field(
        default_factory=lambda: ["package-lock.json", "yarn.lock", "pnpm-lock.yaml"]
    )
    exclude_file_suffixes: list[str] = field(
        default_factory=lambda: [".min.js", ".min.css", ".map", ".lock"]
    )
    max_file_size_bytes: int = 1_000_000


@dataclass
class RetrievalCfg:
    """Query result sizing (quarry.yaml: retrieval:)."""

    default_top_k: int = 5
    max_top_k: int = 20


@dataclass
class QuarryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)

    def validate(self) -> QuarryConfig:
        """Check every setting and raise one ConfigError listing all problems.

        Returns:
            ``self``, so calls can be chained.

        Raises:
            ConfigError: If any setting is out of range.
        """
        errors: list[str] = []
        ing = self.ingestion
        ret = self.retrieval

        if not self.database.path.strip():
            errors.append("database.path must not be empty")

        if not _MIN_DIMENSIONS <= ing.vector_dimensions <= _MAX_DIMENSIONS:
            errors.append(
                f"ingestion.vector_dimensions must be between {_MIN_DIMENSIONS} "
                f"and {_MAX_DIMENSIONS}, got {ing.vector_dimensions}"
            )
        if not _MIN_CHUNK_SIZE <= ing.chunk_size <= _MAX_CHUNK_SIZE:
            errors.append(
                f"ingestion.chunk_size must be between {_MIN_CHUNK_SIZE} "
                f"and {_MAX_CHUNK_SIZE}, got {ing.chunk_size}"
            )
        if ing.chunk_overlap < 0 or ing.chunk_overlap >= ing.chunk_size:
            errors.append(
                "ingestion.chunk_overlap must be >= 0 and less than chunk_size, "
                f"got {ing.chunk_overlap}"
            )
        if ing.embedding_provider not in _EMBEDDING_PROVIDERS:
            errors.append(
                f"ingestion.embedding_provider must be one of "
                f"{', '.join(sorted(_EMBEDDING_PROVIDERS))}, got '{ing.embedding_provider}'"
            )
        if not ing.embedding_model.strip():
            errors.append("ingestion.embedding_model must not be empty")
        if not _MIN_FILE_SIZE <= ing.max_file_size_bytes <= _MAX_FILE_SIZE:
            errors.append(
                f"ingestion.max_file_size_bytes must be between {_MIN_FILE_SIZE} "
                f"and {_MAX_FILE_SIZE}, got {ing.max_file_size_bytes}"
            )
        if not ing.include_extensions:
            errors.append("ingestion.include_extensions must list at least one extension")
        for ext in ing.include_extensions:
            if not ext.startswith("."):
                errors.append(f"ingestion.include_extensions entry '{ext}' must start with '.'")

        if not 1 <= ret.max_top_k <= _MAX_TOP_K_CEILING:
            errors.append(
                f"retrieval.max_top_k must be between 1 and {_MAX_TOP_K_CEILING}, "
                f"got {ret.max_top_k}"
            )
        if not 1 <= ret.default_top_k <= ret.max_top_k:
            errors.append(
                "retrieval.default_top_k must be between 1 and retrieval.max_top_k, "
                f"got {ret.default_top_k}"
            )

        if errors:
            raise ConfigError(
                "Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors)
            )
        return self


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level.")
    return data


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_list(raw: Any, default: list[str]) -> list[str]:
    if raw is None:
        return list(default)
    if isinstance(raw, str):
        raw = [raw]
    return [str(item).strip() for item in raw if str(item).strip()]


def _cfg_from_dict(data: dict[str, Any]) -> QuarryConfig:
    """Build a *QuarryConfig* from a merged raw YAML dict."""
    cfg = QuarryConfig()

    try:
        if "database" in data:
            d = data["database"] or {}
            cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))

        if "ingestion" in data:
            i = data["ingestion"] or {}
            base = cfg.ingestion
            cfg.ingestion = IngestionCfg(
                chunk_size=int(i.get("chunk_size", base.chunk_size)),
                chunk_overlap=int(i.get("chunk_overlap", base.chunk_overlap)),
                vector_dimensions=int(i.get("vector_dimensions", base.vector_dimensions)),
                embedding_provider=str(
                    i.get("embedding_provider", base.embedding_provider)
                ).lower(),
                embedding_model=str(i.get("embedding_model", base.embedding_model)),
                include_extensions=[
                    e.lower() for e in _str_list(i.get("include_extensions"), base.include_extensions)
                ],
                exclude_directories=_str_list(
                    i.get("exclude_directories"), base.exclude_directories
                ),
                exclude_file_names=_str_list(
                    i.get("exclude_file_names"), base.exclude_file_names
                ),
                exclude_file_suffixes=_str_list(
                    i.get("exclude_file_suffixes"), base.exclude_file_suffixes
                ),
                max_file_size_bytes=int(
                    i.get("max_file_size_bytes", base.max_file_size_bytes)
                ),
            )

        if "retrieval" in data:
            r = data["retrieval"] or {}
            cfg.retrieval = RetrievalCfg(
                default_top_k=int(r.get("default_top_k", cfg.retrieval.default_top_k)),
                max_top_k=int(r.get("max_top_k", cfg.retrieval.max_top_k)),
            )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: QuarryConfig) -> QuarryConfig:
    """Apply QUARRY_* environment variable overrides (layer 2)."""
    if path := os.environ.get("QUARRY_DB_PATH"):
        cfg.database.path = path
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.ingestion.embedding_model = model
    if dims := os.environ.get("QUARRY_VECTOR_DIMENSIONS"):
        try:
            cfg.ingestion.vector_dimensions = int(dims)
        except ValueError as exc:
            raise ConfigError(
                f"QUARRY_VECTOR_DIMENSIONS must be an integer, got '{dims}'"
            ) from exc
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> QuarryConfig:
    """Load, validate and return a merged *QuarryConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *QuarryConfig*.

    Raises:
        ConfigError: If a file cannot be parsed, the global config contains
            API-key-like fields, or any value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    return cfg.validate()


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.quarry/config.yaml`` with defaults if it does not exist.

    Creates the parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Quarry global configuration — defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "ingestion:\n"
            "  embedding_provider: hash\n"
            "  vector_dimensions: 256\n"
            "  chunk_size: 200\n"
            "  chunk_overlap: 40\n"
            "\n"
            "retrieval:\n"
            "  default_top_k: 5\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
