"""Management façade: inspection, maintenance and memory operations.

Thin layer over ContentStore and MemoryStore that adds input validation,
safety confirmations for destructive calls, result-count clamping and
logging. Unexpected non-Quarry exceptions are logged and re-raised as
StorageError so callers only ever see the Quarry hierarchy.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from quarry.config import QuarryConfig
from quarry.db.memories import MemoryStore
from quarry.db.models import (
    ChunkRecord,
    HealthCheckResult,
    IndexStats,
    MemoryRecord,
    MemorySearchResult,
    NormalizeResult,
    SourceInfo,
)
from quarry.db.repository import ContentStore
from quarry.embeddings.base import EmbeddingGenerator
from quarry.errors import QuarryError, StorageError, ValidationError

logger = logging.getLogger(__name__)

PURGE_CONFIRM_PHRASE = "PURGE ALL"

_RECALL_DEFAULT, _RECALL_MAX = 10, 50
_MEMORY_LIST_DEFAULT, _MEMORY_LIST_MAX = 20, 100
_SOURCES_DEFAULT = 100


@dataclass
class MemoryRecall:
    """Recall results; ``fallback_used`` marks a recency listing (scores 0.0)."""

    results: list[MemorySearchResult] = field(default_factory=list)
    fallback_used: bool = False


def clamp(value: int | None, default: int, maximum: int) -> int:
    """Clamp *value* (or *default* when None) into ``1..maximum``."""
    if value is None:
        value = default
    return max(1, min(value, maximum))


class ManagementService:
    """Stats, listing, deletion, purge, normalization, health and memories.

    Args:
        store: Document/chunk store.
        memories: Memory store sharing the same database.
        embedder: Generator used to embed memory content and recall queries.
        config: Provides the vector width.
    """

    def __init__(
        self,
        store: ContentStore,
        memories: MemoryStore,
        embedder: EmbeddingGenerator,
        config: QuarryConfig,
    ) -> None:
        self.store = store
        self.memories = memories
        self.embedder = embedder
        self.config = config

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except QuarryError:
            raise
        except Exception as exc:
            logger.exception("%s failed", operation)
            raise StorageError(f"{operation} failed: {exc}") from exc

    def _embed(self, text: str) -> list[float]:
        return self.embedder.generate(text, self.config.ingestion.vector_dimensions)

    # ------------------------------------------------------------------
    # Index inspection
    # ------------------------------------------------------------------

    def get_stats(self, include_size: bool = False) -> IndexStats:
        with self._guard("Index stats"):
            return self.store.index_stats(include_size=include_size)

    def list_sources(self, limit: int = _SOURCES_DEFAULT) -> list[SourceInfo]:
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        with self._guard("List sources"):
            return self.store.list_sources(limit)

    def get_chunk(self, chunk_id: int) -> ChunkRecord | None:
        if chunk_id <= 0:
            raise ValidationError(f"chunk_id must be > 0, got {chunk_id}")
        with self._guard("Get chunk"):
            return self.store.get_chunk(chunk_id)

    def health_check(self) -> HealthCheckResult:
        """Probe the database. Never raises; failures are reported in the result."""
        try:
            result = self.store.health_check()
        except Exception as exc:
            logger.exception("Health check failed")
            return HealthCheckResult(is_healthy=False, message=f"Health check failed: {exc}")
        if not result.is_healthy:
            logger.warning("Health check failed: %s", result.message)
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def delete_source(self, source_path: str, confirm: bool = False) -> int:
        """Delete one source. *confirm* must be True.

        Returns:
            Number of documents removed (0 when the key was not indexed).
        """
        if not source_path or not source_path.strip():
            raise ValidationError("source_path must not be empty")
        if not confirm:
            raise ValidationError("Deleting a source requires confirm=True")
        with self._guard("Delete source"):
            removed = self.store.delete_source(source_path.strip())
        logger.warning("Deleted source %s (%d documents removed)", source_path, removed)
        return removed

    def purge_all(self, confirm_phrase: str) -> int:
        """Delete every indexed document. *confirm_phrase* must be exactly ``PURGE ALL``."""
        if confirm_phrase != PURGE_CONFIRM_PHRASE:
            raise ValidationError(f"confirm_phrase must be '{PURGE_CONFIRM_PHRASE}'")
        with self._guard("Purge"):
            removed = self.store.purge_all()
        logger.warning("Purged index (%d documents removed)", removed)
        return removed

    def normalize_source_paths(
        self,
        project_root: Path | str | None = None,
        cancel: threading.Event | None = None,
    ) -> NormalizeResult:
        root = project_root if project_root is not None else os.getcwd()
        with self._guard("Normalize source paths"):
            return self.store.normalize_source_paths(root, cancel=cancel)

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def create_memory(
        self,
        session_id: str,
        memory_type: str,
        content: str,
        tags: Iterable[str] | None = None,
        project_id: str | None = None,
    ) -> MemoryRecord:
        if not content or not content.strip():
            raise ValidationError("content must not be empty")
        with self._guard("Create memory"):
            record = self.memories.create(
                session_id,
                memory_type,
                content,
                self._embed(content),
                tags=tags,
                project_id=project_id,
            )
        logger.info("Stored %s memory %d for session %s", record.type, record.id, record.session_id)
        return record

    def list_memories(
        self,
        *,
        memory_type: str | None = None,
        tag: str | None = None,
        session_id: str | None = None,
        project_id: str | None = None,
        limit: int | None = None,
    ) -> list[MemoryRecord]:
        with self._guard("List memories"):
            return self.memories.list_memories(
                memory_type=memory_type,
                tag=tag,
                session_id=session_id,
                project_id=project_id,
                limit=clamp(limit, _MEMORY_LIST_DEFAULT, _MEMORY_LIST_MAX),
            )

    def recall_memories(
        self,
        text: str,
        *,
        memory_type: str | None = None,
        tag: str | None = None,
        session_id: str | None = None,
        project_id: str | None = None,
        limit: int | None = None,
    ) -> MemoryRecall:
        """Semantic recall; falls back to the most recent matches when nothing ranks."""
        if not text or not text.strip():
            raise ValidationError("Recall text must not be empty")
        count = clamp(limit, _RECALL_DEFAULT, _RECALL_MAX)
        filters = {
            "memory_type": memory_type,
            "tag": tag,
            "session_id": session_id,
            "project_id": project_id,
        }
        with self._guard("Recall memories"):
            results = self.memories.search(self._embed(text), limit=count, **filters)
            if results:
                return MemoryRecall(results=results)
            recent = self.memories.list_memories(limit=count, **filters)
        if recent:
            logger.debug("Semantic recall empty; returning %d recent memories", len(recent))
        return MemoryRecall(
            results=[MemorySearchResult(memory=m, score=0.0) for m in recent],
            fallback_used=bool(recent),
        )

    def update_memory(
        self,
        memory_id: int,
        *,
        memory_type: str | None = None,
        content: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> bool:
        """Partially update a memory, re-embedding only when content changes."""
        embedding = self._embed(content) if content is not None and content.strip() else None
        with self._guard("Update memory"):
            return self.memories.update(
                memory_id,
                memory_type=memory_type,
                content=content,
                tags=tags,
                embedding=embedding,
            )

    def delete_memory(self, memory_id: int) -> bool:
        with self._guard("Delete memory"):
            deleted = self.memories.delete(memory_id)
        if deleted:
            logger.info("Deleted memory %d", memory_id)
        return deleted
