"""Quarry database layer."""

from quarry.db.connection import Database, transaction
from quarry.db.memories import MemoryStore
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.repository import ContentStore
from quarry.db.schema import initialize
from quarry.db.vectors import ensure_vec_tables

__all__ = [
    "ContentStore",
    "Database",
    "MemoryStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_tables",
    "transaction",
]
