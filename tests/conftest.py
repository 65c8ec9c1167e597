"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quarry.config import QuarryConfig
from quarry.db.connection import Database
from quarry.db.memories import MemoryStore
from quarry.db.repository import ContentStore
from quarry.db.schema import initialize
from quarry.embeddings.hashing import HashEmbeddingGenerator

TEST_DIMENSIONS = 32


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from ~/.quarry and from QUARRY_* variables of the host."""
    monkeypatch.setattr(
        "quarry.config._GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml"
    )
    for var in ("QUARRY_DB_PATH", "QUARRY_EMBEDDING_MODEL", "QUARRY_VECTOR_DIMENSIONS"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def quarry_config(tmp_path) -> QuarryConfig:
    """Small-window, small-width config so tests stay fast and readable."""
    cfg = QuarryConfig()
    cfg.database.path = str(tmp_path / ".quarry.db")
    cfg.ingestion.vector_dimensions = TEST_DIMENSIONS
    cfg.ingestion.chunk_size = 20
    cfg.ingestion.chunk_overlap = 5
    return cfg.validate()


@pytest.fixture
def database(tmp_path) -> Database:
    return Database(tmp_path / ".quarry.db")


@pytest.fixture
def tmp_db(database):
    """Open connection with schema initialized, closed after test."""
    conn = database.connect()
    initialize(conn, TEST_DIMENSIONS)
    yield conn
    conn.close()


@pytest.fixture
def store(database) -> ContentStore:
    content_store = ContentStore(database, TEST_DIMENSIONS)
    content_store.init_schema()
    return content_store


@pytest.fixture
def memory_store(store, database) -> MemoryStore:
    return MemoryStore(database, TEST_DIMENSIONS)


@pytest.fixture
def embedder() -> HashEmbeddingGenerator:
    return HashEmbeddingGenerator()
