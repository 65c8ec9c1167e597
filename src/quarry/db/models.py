"""Domain models for the Quarry database layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

SNIPPET_CHARS = 280

MEMORY_TYPES: frozenset[str] = frozenset(["episodic", "semantic", "procedural"])


class UpsertStatus(str, enum.Enum):
    """Outcome of ContentStore.upsert_document()."""

    UNCHANGED = "unchanged"
    UPDATED = "updated"


@dataclass
class ChunkEmbedding:
    """A chunk ready for persistence: ordinal, text, token count and vector."""

    chunk_index: int
    chunk_text: str
    token_count: int
    embedding: list[float]


@dataclass
class Document:
    id: int
    source_path: str
    content_hash: str
    indexed_at: str


@dataclass
class SearchResult:
    """One ranked chunk returned by similarity search."""

    chunk_id: int
    source_path: str
    chunk_index: int
    chunk_text: str
    score: float

    def snippet(self, max_chars: int = SNIPPET_CHARS) -> str:
        return make_snippet(self.chunk_text, max_chars)


@dataclass
class TextSearchResult:
    """One chunk returned by BM25 full-text search (lower score = better)."""

    chunk_id: int
    source_path: str
    chunk_index: int
    chunk_text: str
    bm25: float


@dataclass
class SourceInfo:
    source_path: str
    chunk_count: int
    indexed_at: str
    content_hash: str


@dataclass
class ChunkRecord:
    chunk_id: int
    source_path: str
    chunk_index: int
    chunk_text: str
    token_count: int
    indexed_at: str


@dataclass
class IndexStats:
    """Aggregate counts over the whole index.

    Attributes:
        index_size_bytes: Database file size; None unless requested.
    """

    document_count: int = 0
    chunk_count: int = 0
    total_tokens: int = 0
    project_count: int = 0
    oldest_indexed_at: str | None = None
    newest_indexed_at: str | None = None
    index_size_bytes: int | None = None


@dataclass
class NormalizeResult:
    renamed: int = 0
    duplicates_removed: int = 0


@dataclass
class HealthCheckResult:
    is_healthy: bool
    message: str


@dataclass
class MemoryRecord:
    id: int
    session_id: str
    project_id: str | None
    type: str
    content: str
    tags: list[str] = field(default_factory=list)
    created_at: str = ""


@dataclass
class MemorySearchResult:
    memory: MemoryRecord
    score: float


def make_snippet(text: str, max_chars: int = SNIPPET_CHARS) -> str:
    """Flatten newlines and truncate *text* to *max_chars* (plus an ellipsis)."""
    flat = text.replace("\r", " ").replace("\n", " ").strip()
    if len(flat) <= max_chars:
        return flat
    return flat[:max_chars] + "..."
