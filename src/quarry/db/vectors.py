"""sqlite-vec virtual table management.

The embedding width is baked into each vec0 table when it is created, so the
dimension is recorded in ``index_meta`` and checked on every initialisation.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence

from quarry.errors import DimensionMismatchError, ValidationError

CHUNK_VEC_TABLE = "vec_chunks"
MEMORY_VEC_TABLE = "vec_memories"
VEC_TABLES: tuple[str, ...] = (CHUNK_VEC_TABLE, MEMORY_VEC_TABLE)

_DIMENSION_KEY = "vector_dimensions"


def ensure_vec_tables(conn: sqlite3.Connection, dimensions: int) -> None:
    """Create the chunk and memory vec0 tables if they don't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded and
            migrations applied, see quarry.db.schema.initialize).
        dimensions: Embedding vector width.

    Raises:
        ValidationError: If *dimensions* is < 1.
        DimensionMismatchError: If the database was initialised with a
            different width.
    """
    if dimensions < 1:
        raise ValidationError(f"dimensions must be >= 1, got {dimensions}")

    stored = stored_dimensions(conn)
    if stored is not None and stored != dimensions:
        raise DimensionMismatchError(expected=stored, actual=dimensions)

    for table in VEC_TABLES:
        existing = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        if existing is None:
            conn.execute(
                f"CREATE VIRTUAL TABLE {table} USING vec0("
                f"embedding float[{dimensions}] distance_metric=cosine)"
            )

    if stored is None:
        conn.execute(
            "INSERT INTO index_meta (key, value) VALUES (?, ?)",
            (_DIMENSION_KEY, str(dimensions)),
        )
    conn.commit()


def stored_dimensions(conn: sqlite3.Connection) -> int | None:
    """Return the width recorded at first initialisation, or None."""
    row = conn.execute(
        "SELECT value FROM index_meta WHERE key = ?", (_DIMENSION_KEY,)
    ).fetchone()
    return int(row["value"]) if row else None


def serialize(embedding: Sequence[float], dimensions: int) -> str:
    """Encode *embedding* for a vec0 column after checking its width."""
    if len(embedding) != dimensions:
        raise DimensionMismatchError(expected=dimensions, actual=len(embedding))
    return json.dumps([float(x) for x in embedding])


def delete_vectors(
    conn: sqlite3.Connection, table: str, rowids: Sequence[int]
) -> int:
    """Delete *rowids* from a vec table. Returns the number of rows removed."""
    if table not in VEC_TABLES:
        raise ValueError(f"Unknown vec table '{table}'")
    if not rowids:
        return 0
    placeholders = ",".join("?" * len(rowids))
    cur = conn.execute(
        f"DELETE FROM {table} WHERE rowid IN ({placeholders})",  # noqa: S608
        list(rowids),
    )
    return cur.rowcount
