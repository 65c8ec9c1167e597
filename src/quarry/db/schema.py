"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from quarry.db.migrations import run_migrations
from quarry.db.vectors import ensure_vec_tables


def initialize(conn: sqlite3.Connection, dimensions: int) -> None:
    """Apply migrations and create the vec tables (idempotent).

    Raises:
        DimensionMismatchError: If the database already holds vectors of a
            different width.
    """
    run_migrations(conn)
    ensure_vec_tables(conn, dimensions)
