"""Memory records: scoped notes with tags and embeddings.

Memories live beside the document index and reuse its vector machinery
(``vec_memories`` vec0 table keyed by ``memories.id``), but have their own
lifecycle: callers create, update and delete them directly.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from quarry.db.connection import Database, transaction
from quarry.db.models import MEMORY_TYPES, MemoryRecord, MemorySearchResult
from quarry.db.repository import utc_now
from quarry.db.vectors import MEMORY_VEC_TABLE, delete_vectors, serialize
from quarry.errors import QuarryError, StorageError, ValidationError


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Trim tags, drop blanks and duplicates, keep first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or []:
        cleaned = str(tag).strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def validate_memory_type(memory_type: str) -> str:
    normalized = (memory_type or "").strip().lower()
    if normalized not in MEMORY_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(sorted(MEMORY_TYPES))}, got '{memory_type}'"
        )
    return normalized


class MemoryStore:
    """Data access layer for memory records.

    Args:
        database: Database handle; schema must already be initialised.
        dimensions: Embedding width (same as the document index).
    """

    def __init__(self, database: Database, dimensions: int) -> None:
        self._db = database
        self.dimensions = dimensions

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._db.session() as conn:
                yield conn
        except QuarryError:
            raise
        except sqlite3.Error as exc:
            raise StorageError(f"Memory operation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        session_id: str,
        memory_type: str,
        content: str,
        embedding: Sequence[float],
        tags: Iterable[str] | None = None,
        project_id: str | None = None,
    ) -> MemoryRecord:
        """Persist a new memory and return it with its assigned id."""
        if not session_id or not session_id.strip():
            raise ValidationError("session_id must not be empty")
        if not content or not content.strip():
            raise ValidationError("content must not be empty")
        if not embedding:
            raise ValidationError("embedding must not be empty")
        memory_type = validate_memory_type(memory_type)
        vector = serialize(embedding, self.dimensions)
        clean_tags = normalize_tags(tags)
        created_at = utc_now()

        with self._session() as conn, transaction(conn):
            cur = conn.execute(
                """
                INSERT INTO memories (session_id, project_id, type, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (session_id.strip(), _clean_optional(project_id), memory_type, content, created_at),
            )
            memory_id = cur.lastrowid
            _write_tags(conn, memory_id, clean_tags)
            conn.execute(
                f"INSERT INTO {MEMORY_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",  # noqa: S608
                (memory_id, vector),
            )

        return MemoryRecord(
            id=memory_id,
            session_id=session_id.strip(),
            project_id=_clean_optional(project_id),
            type=memory_type,
            content=content,
            tags=clean_tags,
            created_at=created_at,
        )

    def update(
        self,
        memory_id: int,
        *,
        memory_type: str | None = None,
        content: str | None = None,
        tags: Iterable[str] | None = None,
        embedding: Sequence[float] | None = None,
    ) -> bool:
        """Partially update a memory. Fields left as None are kept.

        The embedding is replaced only together with new content.

        Returns:
            True if the memory exists and was updated, False if not found.

        Raises:
            ValidationError: Non-positive id, blank content, bad type, or new
                content without a new embedding.
        """
        if memory_id <= 0:
            raise ValidationError(f"memory_id must be > 0, got {memory_id}")
        if content is not None and not content.strip():
            raise ValidationError("content must not be empty")
        if content is not None and not embedding:
            raise ValidationError("embedding is required when content changes")
        if memory_type is not None:
            memory_type = validate_memory_type(memory_type)
        vector = serialize(embedding, self.dimensions) if content is not None else None

        with self._session() as conn, transaction(conn):
            cur = conn.execute(
                """
                UPDATE memories
                SET type = COALESCE(?, type),
                    content = COALESCE(?, content)
                WHERE id = ?
                """,
                (memory_type, content, memory_id),
            )
            if cur.rowcount == 0:
                return False
            if tags is not None:
                conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (memory_id,))
                _write_tags(conn, memory_id, normalize_tags(tags))
            if vector is not None:
                delete_vectors(conn, MEMORY_VEC_TABLE, [memory_id])
                conn.execute(
                    f"INSERT INTO {MEMORY_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",  # noqa: S608
                    (memory_id, vector),
                )
        return True

    def delete(self, memory_id: int) -> bool:
        """Delete a memory with its tags and vector. Returns False if not found."""
        if memory_id <= 0:
            raise ValidationError(f"memory_id must be > 0, got {memory_id}")
        with self._session() as conn, transaction(conn):
            delete_vectors(conn, MEMORY_VEC_TABLE, [memory_id])
            cur = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, memory_id: int) -> MemoryRecord | None:
        if memory_id <= 0:
            raise ValidationError(f"memory_id must be > 0, got {memory_id}")
        with self._session() as conn:
            row = conn.execute(
                "SELECT id, session_id, project_id, type, content, created_at FROM memories WHERE id = ?",
                (memory_id,),
            ).fetchone()
            if row is None:
                return None
            tags = _load_tags(conn, [memory_id])
        return _row_to_memory(row, tags.get(memory_id, []))

    def list_memories(
        self,
        *,
        memory_type: str | None = None,
        tag: str | None = None,
        session_id: str | None = None,
        project_id: str | None = None,
        limit: int = 20,
    ) -> list[MemoryRecord]:
        """Return memories matching all given filters, newest first."""
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        where, params = _filters(memory_type, tag, session_id, project_id)
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT m.id, m.session_id, m.project_id, m.type, m.content, m.created_at
                FROM memories m
                {where}
                ORDER BY m.created_at DESC, m.id DESC
                LIMIT ?
                """,  # noqa: S608
                [*params, limit],
            ).fetchall()
            tags = _load_tags(conn, [r["id"] for r in rows])
        return [_row_to_memory(r, tags.get(r["id"], [])) for r in rows]

    def search(
        self,
        query_embedding: Sequence[float],
        *,
        memory_type: str | None = None,
        tag: str | None = None,
        session_id: str | None = None,
        project_id: str | None = None,
        limit: int = 10,
    ) -> list[MemorySearchResult]:
        """Rank filtered memories by cosine similarity to *query_embedding*."""
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        vector = serialize(query_embedding, self.dimensions)
        where, params = _filters(memory_type, tag, session_id, project_id)
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT m.id, m.session_id, m.project_id, m.type, m.content, m.created_at,
                       vec_distance_cosine(v.embedding, ?) AS distance
                FROM memories m
                JOIN {MEMORY_VEC_TABLE} v ON v.rowid = m.id
                {where}
                ORDER BY distance, m.id DESC
                LIMIT ?
                """,  # noqa: S608
                [vector, *params, limit],
            ).fetchall()
            tags = _load_tags(conn, [r["id"] for r in rows])
        return [
            MemorySearchResult(
                memory=_row_to_memory(r, tags.get(r["id"], [])),
                score=1.0 - float(r["distance"]),
            )
            for r in rows
        ]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _clean_optional(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _filters(
    memory_type: str | None,
    tag: str | None,
    session_id: str | None,
    project_id: str | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if memory_type:
        clauses.append("m.type = ?")
        params.append(validate_memory_type(memory_type))
    if tag and tag.strip():
        clauses.append("EXISTS (SELECT 1 FROM memory_tags t WHERE t.memory_id = m.id AND t.tag = ?)")
        params.append(tag.strip())
    if session_id and session_id.strip():
        clauses.append("m.session_id = ?")
        params.append(session_id.strip())
    if project_id and project_id.strip():
        clauses.append("m.project_id = ?")
        params.append(project_id.strip())
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def _write_tags(conn: sqlite3.Connection, memory_id: int, tags: Sequence[str]) -> None:
    conn.executemany(
        "INSERT OR IGNORE INTO memory_tags (memory_id, tag) VALUES (?, ?)",
        [(memory_id, t) for t in tags],
    )


def _load_tags(conn: sqlite3.Connection, memory_ids: Sequence[int]) -> dict[int, list[str]]:
    if not memory_ids:
        return {}
    placeholders = ",".join("?" * len(memory_ids))
    result: dict[int, list[str]] = {}
    for row in conn.execute(
        f"SELECT memory_id, tag FROM memory_tags WHERE memory_id IN ({placeholders}) ORDER BY tag",  # noqa: S608
        list(memory_ids),
    ):
        result.setdefault(row["memory_id"], []).append(row["tag"])
    return result


def _row_to_memory(row: sqlite3.Row, tags: list[str]) -> MemoryRecord:
    return MemoryRecord(
        id=row["id"],
        session_id=row["session_id"],
        project_id=row["project_id"],
        type=row["type"],
        content=row["content"],
        tags=tags,
        created_at=row["created_at"],
    )
