"""rag-sources.md — a human-readable inventory of the index.

Rewritten after every index mutation so a project checkout shows what has
been indexed and with which chunking settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from quarry.config import QuarryConfig
from quarry.db.models import SourceInfo
from quarry.db.repository import ContentStore

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "rag-sources.md"
_MAX_SOURCES = 10_000


@dataclass
class ManifestResult:
    path: Path
    source_count: int


class SourcesManifest:
    """Render and write the sources manifest.

    Args:
        store: Content store to list sources from.
        config: Supplies the chunking and filter settings shown in the table.
    """

    def __init__(self, store: ContentStore, config: QuarryConfig) -> None:
        self.store = store
        self.config = config

    def sync(self, context_path: Path | str | None = None) -> ManifestResult:
        """Write the manifest next to *context_path* (or into the CWD).

        Args:
            context_path: An absolute directory, or an absolute file whose
                parent directory should hold the manifest. Relative or empty
                values fall back to the current directory.
        """
        target = resolve_manifest_path(context_path)
        sources = self.store.list_sources(limit=_MAX_SOURCES)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render(sources), encoding="utf-8")
        logger.info("Sources manifest written to %s (%d sources)", target, len(sources))
        return ManifestResult(path=target, source_count=len(sources))

    def try_sync(self, context_path: Path | str | None = None) -> ManifestResult | None:
        """sync(), but log and swallow filesystem/storage failures."""
        try:
            return self.sync(context_path)
        except Exception as exc:
            logger.warning("Sources manifest sync failed: %s", exc)
            return None

    def render(self, sources: list[SourceInfo]) -> str:
        ing = self.config.ingestion
        include = ", ".join(f"*{ext}" for ext in ing.include_extensions)
        exclude = ", ".join(f"**/{d}/**" for d in ing.exclude_directories)
        model = self._model_label()

        lines = [
            "# RAG Sources",
            "",
            "This file is automatically synchronized by quarry after index mutations.",
            "",
            "## Source Inventory",
            "",
            "| Source Path | Chunks | Include Pattern | Exclude Pattern | Chunk Size "
            "| Chunk Overlap | Embedding Model | Last Indexed (UTC) |",
            "|---|---|---|---|---|---|---|---|",
        ]
        for source in sources:
            lines.append(
                f"| `{source.source_path}` | {source.chunk_count} | `{include}` | `{exclude}` "
                f"| {ing.chunk_size} | {ing.chunk_overlap} | `{model}` "
                f"| `{_format_timestamp(source.indexed_at)}` |"
            )
        if not sources:
            lines.append("| _none_ | - | - | - | - | - | - | - |")

        lines += [
            "",
            "## Chunking Defaults",
            "",
            f"- Default chunk size: `{ing.chunk_size}`",
            f"- Default overlap: `{ing.chunk_overlap}`",
            f"- Vector dimensions: `{ing.vector_dimensions}`",
            "",
        ]
        return "\n".join(lines)

    def _model_label(self) -> str:
        ing = self.config.ingestion
        if ing.embedding_provider == "hash":
            return "hash"
        return ing.embedding_model or "unknown"


def resolve_manifest_path(context_path: Path | str | None) -> Path:
    if context_path:
        candidate = Path(context_path)
        if candidate.is_absolute():
            if candidate.is_dir():
                return candidate / MANIFEST_FILE_NAME
            return candidate.parent / MANIFEST_FILE_NAME
    return Path.cwd() / MANIFEST_FILE_NAME


def _format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%dT%H:%M:%SZ")
    except ValueError:
        return value
