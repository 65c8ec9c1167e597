"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec

from quarry.errors import OperationCancelledError

# Seconds to wait on a locked database before sqlite3 raises.
_BUSY_TIMEOUT = 30.0


class Database:
    """Per-project SQLite database with sqlite-vec vector search support.

    Connections are opened in autocommit mode; writes that must be atomic go
    through :func:`transaction`, which issues ``BEGIN IMMEDIATE`` so that
    concurrent writers to the same file are serialised by SQLite itself.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=_BUSY_TIMEOUT, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a fresh connection for one unit of work, closing it afterwards."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    def size_bytes(self) -> int:
        """Return the on-disk size of the database plus its WAL file."""
        total = 0
        for path in (self.db_path, self.db_path.with_name(self.db_path.name + "-wal")):
            if path.exists():
                total += path.stat().st_size
        return total

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed block inside ``BEGIN IMMEDIATE`` … ``COMMIT``.

    Any exception raised in the block (including cancellation) rolls the
    transaction back and is re-raised.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def check_cancelled(cancel: threading.Event | None) -> None:
    """Raise OperationCancelledError if *cancel* has been set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled.")
