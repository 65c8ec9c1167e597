"""Content store: documents, chunks, vectors and full-text search.

Single interface for: document upsert with change detection, chunk
persistence (rows + vec0 vectors + FTS5 entries), similarity search,
source listing/deletion, stats and source-path normalization.

Every public method opens its own connection via Database.session() and
closes it before returning; no connection is held between calls. sqlite3
failures are re-raised as StorageError.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from quarry.db.connection import Database, check_cancelled, transaction
from quarry.db.models import (
    ChunkEmbedding,
    ChunkRecord,
    Document,
    HealthCheckResult,
    IndexStats,
    NormalizeResult,
    SearchResult,
    SourceInfo,
    TextSearchResult,
    UpsertStatus,
)
from quarry.db.schema import initialize
from quarry.db.vectors import CHUNK_VEC_TABLE, delete_vectors, serialize
from quarry.errors import QuarryError, StorageError, ValidationError
from quarry.pathing import normalize_for_storage, project_of

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current UTC time as a sortable ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class ContentStore:
    """Data access layer for indexed documents and their chunks.

    Args:
        database: Database handle (path + connection factory).
        dimensions: Embedding width every stored and queried vector must have.
    """

    def __init__(self, database: Database, dimensions: int) -> None:
        self._db = database
        self.dimensions = dimensions

    @property
    def database(self) -> Database:
        return self._db

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._db.session() as conn:
                yield conn
        except QuarryError:
            raise
        except sqlite3.Error as exc:
            raise StorageError(f"Database operation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create tables and vec indexes (idempotent).

        Raises:
            DimensionMismatchError: If the database was created with a
                different vector width than ``self.dimensions``.
        """
        with self._session() as conn:
            initialize(conn, self.dimensions)
        logger.debug("Schema ready at %s (dimensions=%d)", self._db.db_path, self.dimensions)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert_document(
        self,
        source_path: str,
        content_hash: str,
        chunks: Sequence[ChunkEmbedding],
        cancel: threading.Event | None = None,
    ) -> UpsertStatus:
        """Insert or replace a document and its full chunk set atomically.

        Args:
            source_path: Unique storage key of the document.
            content_hash: Fingerprint of the full document text.
            chunks: Complete new chunk set (ordinals, texts, vectors).
            cancel: Optional cancellation signal, checked between writes.

        Returns:
            ``UNCHANGED`` when the stored hash matches (nothing is written,
            not even the timestamp); ``UPDATED`` otherwise.

        Raises:
            ValidationError: Blank key or hash.
            DimensionMismatchError: A chunk vector has the wrong width.
            OperationCancelledError: *cancel* was set; the transaction is
                rolled back.
        """
        if not source_path or not source_path.strip():
            raise ValidationError("source_path must not be empty")
        if not content_hash:
            raise ValidationError("content_hash must not be empty")
        encoded = [serialize(c.embedding, self.dimensions) for c in chunks]

        with self._session() as conn, transaction(conn):
            check_cancelled(cancel)
            row = conn.execute(
                "SELECT id, content_hash FROM documents WHERE source_path = ?",
                (source_path,),
            ).fetchone()

            if row is not None and row["content_hash"] == content_hash:
                conn.rollback()
                return UpsertStatus.UNCHANGED

            now = utc_now()
            if row is not None:
                document_id = row["id"]
                conn.execute(
                    "UPDATE documents SET content_hash = ?, indexed_at = ? WHERE id = ?",
                    (content_hash, now, document_id),
                )
                _delete_chunks(conn, [document_id])
            else:
                cur = conn.execute(
                    "INSERT INTO documents (source_path, content_hash, indexed_at) VALUES (?, ?, ?)",
                    (source_path, content_hash, now),
                )
                document_id = cur.lastrowid

            for chunk, vector in zip(chunks, encoded):
                check_cancelled(cancel)
                _insert_chunk(conn, document_id, chunk, vector)

        return UpsertStatus.UPDATED

    def get_document(self, source_path: str) -> Document | None:
        """Return the document stored under *source_path*, or None."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT id, source_path, content_hash, indexed_at FROM documents WHERE source_path = ?",
                (source_path,),
            ).fetchone()
        return _row_to_document(row) if row else None

    def get_chunks(self, source_path: str) -> list[ChunkRecord]:
        """Return all chunks of one document in ordinal order."""
        with self._session() as conn:
            rows = conn.execute(
                f"{_CHUNK_RECORD_SELECT} WHERE d.source_path = ? ORDER BY c.chunk_index",
                (source_path,),
            ).fetchall()
        return [_row_to_chunk_record(r) for r in rows]

    def get_chunk(self, chunk_id: int) -> ChunkRecord | None:
        """Return one chunk with its document metadata, or None if missing.

        Raises:
            ValidationError: If *chunk_id* is not positive.
        """
        if chunk_id <= 0:
            raise ValidationError(f"chunk_id must be > 0, got {chunk_id}")
        with self._session() as conn:
            row = conn.execute(
                f"{_CHUNK_RECORD_SELECT} WHERE c.id = ?", (chunk_id,)
            ).fetchone()
        return _row_to_chunk_record(row) if row else None

    def list_sources(self, limit: int = 100) -> list[SourceInfo]:
        """Return indexed sources, most recently indexed first."""
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT d.source_path, d.content_hash, d.indexed_at, COUNT(c.id) AS chunk_count
                FROM documents d
                LEFT JOIN chunks c ON c.document_id = d.id
                GROUP BY d.id
                ORDER BY d.indexed_at DESC, d.id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            SourceInfo(
                source_path=r["source_path"],
                chunk_count=r["chunk_count"],
                indexed_at=r["indexed_at"],
                content_hash=r["content_hash"],
            )
            for r in rows
        ]

    def recent_documents(self, limit: int = 10) -> list[Document]:
        """Return the most recently indexed documents (ties: highest id first)."""
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT id, source_path, content_hash, indexed_at FROM documents
                ORDER BY indexed_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def delete_source(self, source_path: str) -> int:
        """Delete one document with its chunks. Returns documents removed (0 or 1)."""
        if not source_path or not source_path.strip():
            raise ValidationError("source_path must not be empty")
        with self._session() as conn, transaction(conn):
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM documents WHERE source_path = ?", (source_path,)
                ).fetchall()
            ]
            return _delete_documents(conn, ids)

    def purge_all(self) -> int:
        """Delete every document and chunk. Memories are kept. Returns documents removed."""
        with self._session() as conn, transaction(conn):
            removed = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            conn.execute(f"DELETE FROM {CHUNK_VEC_TABLE}")  # noqa: S608
            conn.execute("DELETE FROM chunks_fts")
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM documents")
        logger.info("Purged %d documents", removed)
        return removed

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query_embedding: Sequence[float], top_k: int) -> list[SearchResult]:
        """Nearest-neighbour search over chunk vectors.

        Scores are ``1 - cosine distance``; results are sorted best-first and
        no minimum score is applied.
        """
        if top_k <= 0:
            raise ValidationError(f"top_k must be > 0, got {top_k}")
        encoded = serialize(query_embedding, self.dimensions)

        with self._session() as conn:
            vec_rows = conn.execute(
                f"SELECT rowid, distance FROM {CHUNK_VEC_TABLE} "  # noqa: S608
                "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
                (encoded, top_k),
            ).fetchall()
            if not vec_rows:
                return []
            details = _chunk_details(conn, [r["rowid"] for r in vec_rows])

        results: list[SearchResult] = []
        for vec_row in vec_rows:
            row = details.get(vec_row["rowid"])
            if row is None:
                continue
            results.append(
                SearchResult(
                    chunk_id=row["id"],
                    source_path=row["source_path"],
                    chunk_index=row["chunk_index"],
                    chunk_text=row["chunk_text"],
                    score=1.0 - float(vec_row["distance"]),
                )
            )
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    def search_text(self, query: str, limit: int = 10) -> list[TextSearchResult]:
        """BM25 full-text search. Returns results sorted best-first.

        bm25() returns negative values; lower (more negative) = better match.
        The raw score is returned so callers can apply thresholds.
        """
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        # FTS5 MATCH rejects punctuation like commas as syntax errors.
        fts_query = re.sub(r"[^\w\s]", " ", query).strip()
        if not fts_query:
            return []
        with self._session() as conn:
            fts_rows = conn.execute(
                "SELECT rowid, bm25(chunks_fts) AS score FROM chunks_fts "
                "WHERE chunks_fts MATCH ? ORDER BY score LIMIT ?",
                (fts_query, limit),
            ).fetchall()
            if not fts_rows:
                return []
            details = _chunk_details(conn, [r["rowid"] for r in fts_rows])

        return [
            TextSearchResult(
                chunk_id=details[r["rowid"]]["id"],
                source_path=details[r["rowid"]]["source_path"],
                chunk_index=details[r["rowid"]]["chunk_index"],
                chunk_text=details[r["rowid"]]["chunk_text"],
                bm25=float(r["score"]),
            )
            for r in fts_rows
            if r["rowid"] in details
        ]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def health_check(self) -> HealthCheckResult:
        """Probe storage connectivity with ``SELECT 1``. Never raises."""
        try:
            with self._session() as conn:
                conn.execute("SELECT 1").fetchone()
        except StorageError as exc:
            return HealthCheckResult(is_healthy=False, message=str(exc))
        return HealthCheckResult(is_healthy=True, message="Database connection is healthy.")

    def index_stats(self, include_size: bool = False) -> IndexStats:
        """Return document/chunk/token counts and the indexed time range."""
        with self._session() as conn:
            doc_row = conn.execute(
                "SELECT COUNT(*) AS n, MIN(indexed_at) AS oldest, MAX(indexed_at) AS newest FROM documents"
            ).fetchone()
            chunk_row = conn.execute(
                "SELECT COUNT(*) AS n, COALESCE(SUM(token_count), 0) AS tokens FROM chunks"
            ).fetchone()
            paths = [r[0] for r in conn.execute("SELECT source_path FROM documents")]

        projects = {p for p in (project_of(path) for path in paths) if p}
        return IndexStats(
            document_count=doc_row["n"],
            chunk_count=chunk_row["n"],
            total_tokens=chunk_row["tokens"],
            project_count=len(projects),
            oldest_indexed_at=doc_row["oldest"],
            newest_indexed_at=doc_row["newest"],
            index_size_bytes=self._db.size_bytes() if include_size else None,
        )

    def normalize_source_paths(
        self,
        project_root: Path | str,
        cancel: threading.Event | None = None,
    ) -> NormalizeResult:
        """Rewrite stored keys to canonical form and drop duplicate documents.

        Documents are grouped by canonical key (case-insensitive). In each
        group the most recently indexed row wins (ties: highest id); the
        others are deleted with their chunks, then the winner is renamed to
        the canonical key if it differs. Re-running is a no-op.

        Returns:
            Counts of renamed rows and removed duplicates.
        """
        root = str(project_root)
        with self._session() as conn:
            renames, losers = _plan_normalization(_all_documents(conn), root)
            if not renames and not losers:
                return NormalizeResult()

            with transaction(conn):
                # Re-plan under the write lock so concurrent writers are seen.
                renames, losers = _plan_normalization(_all_documents(conn), root)
                check_cancelled(cancel)
                removed = _delete_documents(conn, losers)
                for document_id, canonical in renames:
                    check_cancelled(cancel)
                    conn.execute(
                        "UPDATE documents SET source_path = ? WHERE id = ?",
                        (canonical, document_id),
                    )

        logger.info(
            "Normalized source paths: %d renamed, %d duplicates removed",
            len(renames),
            removed,
        )
        return NormalizeResult(renamed=len(renames), duplicates_removed=removed)


# ------------------------------------------------------------------
# Statement helpers (operate on an open connection)
# ------------------------------------------------------------------

_CHUNK_RECORD_SELECT = """
    SELECT c.id, d.source_path, c.chunk_index, c.chunk_text, c.token_count, d.indexed_at
    FROM chunks c
    JOIN documents d ON d.id = c.document_id
"""


def _insert_chunk(
    conn: sqlite3.Connection, document_id: int, chunk: ChunkEmbedding, vector: str
) -> int:
    """Insert chunk row + FTS5 entry + vector, all keyed by the chunk id."""
    cur = conn.execute(
        """
        INSERT INTO chunks (document_id, chunk_index, chunk_text, token_count)
        VALUES (?, ?, ?, ?)
        """,
        (document_id, chunk.chunk_index, chunk.chunk_text, chunk.token_count),
    )
    chunk_id = cur.lastrowid
    conn.execute(
        "INSERT INTO chunks_fts(rowid, chunk_text) VALUES (?, ?)", (chunk_id, chunk.chunk_text)
    )
    conn.execute(
        f"INSERT INTO {CHUNK_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",  # noqa: S608
        (chunk_id, vector),
    )
    return chunk_id


def _delete_chunks(conn: sqlite3.Connection, document_ids: Sequence[int]) -> int:
    """Delete chunks + FTS entries + vectors for documents (cascade not available on virtual tables)."""
    if not document_ids:
        return 0
    placeholders = ",".join("?" * len(document_ids))
    chunk_ids = [
        r[0]
        for r in conn.execute(
            f"SELECT id FROM chunks WHERE document_id IN ({placeholders})",  # noqa: S608
            list(document_ids),
        ).fetchall()
    ]
    if chunk_ids:
        chunk_placeholders = ",".join("?" * len(chunk_ids))
        conn.execute(
            f"DELETE FROM chunks_fts WHERE rowid IN ({chunk_placeholders})",  # noqa: S608
            chunk_ids,
        )
        delete_vectors(conn, CHUNK_VEC_TABLE, chunk_ids)
    conn.execute(
        f"DELETE FROM chunks WHERE document_id IN ({placeholders})",  # noqa: S608
        list(document_ids),
    )
    return len(chunk_ids)


def _delete_documents(conn: sqlite3.Connection, document_ids: Sequence[int]) -> int:
    if not document_ids:
        return 0
    _delete_chunks(conn, document_ids)
    placeholders = ",".join("?" * len(document_ids))
    return conn.execute(
        f"DELETE FROM documents WHERE id IN ({placeholders})",  # noqa: S608
        list(document_ids),
    ).rowcount


def _chunk_details(conn: sqlite3.Connection, chunk_ids: Sequence[int]) -> dict[int, sqlite3.Row]:
    placeholders = ",".join("?" * len(chunk_ids))
    rows = conn.execute(
        f"""
        SELECT c.id, c.chunk_index, c.chunk_text, d.source_path
        FROM chunks c
        JOIN documents d ON d.id = c.document_id
        WHERE c.id IN ({placeholders})
        """,  # noqa: S608
        list(chunk_ids),
    ).fetchall()
    return {r["id"]: r for r in rows}


def _all_documents(conn: sqlite3.Connection) -> list[Document]:
    rows = conn.execute(
        "SELECT id, source_path, content_hash, indexed_at FROM documents"
    ).fetchall()
    return [_row_to_document(r) for r in rows]


def _plan_normalization(
    documents: Sequence[Document], project_root: str
) -> tuple[list[tuple[int, str]], list[int]]:
    """Return ([(winner_id, canonical_key)], [loser_id]) for *documents*."""
    groups: dict[str, list[tuple[Document, str]]] = {}
    for doc in documents:
        canonical = normalize_for_storage(doc.source_path, project_root)
        groups.setdefault(canonical.lower(), []).append((doc, canonical))

    renames: list[tuple[int, str]] = []
    losers: list[int] = []
    for members in groups.values():
        members.sort(key=lambda m: (m[0].indexed_at, m[0].id), reverse=True)
        winner, canonical = members[0]
        losers.extend(doc.id for doc, _ in members[1:])
        if winner.source_path != canonical:
            renames.append((winner.id, canonical))
    return renames, losers


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        source_path=row["source_path"],
        content_hash=row["content_hash"],
        indexed_at=row["indexed_at"],
    )


def _row_to_chunk_record(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(
        chunk_id=row["id"],
        source_path=row["source_path"],
        chunk_index=row["chunk_index"],
        chunk_text=row["chunk_text"],
        token_count=row["token_count"],
        indexed_at=row["indexed_at"],
    )
