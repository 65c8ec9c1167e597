"""Tests for the management façade."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from quarry.db.models import HealthCheckResult, MemoryRecord
from quarry.errors import StorageError, ValidationError
from quarry.services.indexer import Indexer
from quarry.services.management import PURGE_CONFIRM_PHRASE, ManagementService, clamp


@pytest.fixture
def management(store, memory_store, embedder, quarry_config) -> ManagementService:
    return ManagementService(store, memory_store, embedder, quarry_config)


@pytest.fixture
def indexer(store, embedder, quarry_config) -> Indexer:
    return Indexer(store, embedder, quarry_config)


def _index(indexer: Indexer, tmp_path, key: str, text: str):
    return indexer.index_text(key, text, project_root=tmp_path / "app")


# ---------------------------------------------------------------------------
# clamp
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("value,expected", [(None, 10), (0, 1), (-5, 1), (7, 7), (500, 50)])
def test_clamp(value, expected):
    assert clamp(value, 10, 50) == expected


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


def test_get_stats(management, indexer, tmp_path):
    _index(indexer, tmp_path, "a.md", "one two three")
    stats = management.get_stats(include_size=True)
    assert stats.document_count == 1
    assert stats.chunk_count == 1
    assert stats.total_tokens == 3
    assert stats.index_size_bytes > 0


def test_list_sources_validates_limit(management):
    with pytest.raises(ValidationError):
        management.list_sources(0)


def test_get_chunk(management, indexer, store, tmp_path):
    _index(indexer, tmp_path, "a.md", "one two three")
    chunk_id = store.get_chunks("a.md")[0].chunk_id
    assert management.get_chunk(chunk_id).chunk_text == "one two three"


def test_get_chunk_validates_id(management):
    with pytest.raises(ValidationError):
        management.get_chunk(0)


def test_health_check_healthy(management):
    assert management.health_check().is_healthy


def test_health_check_never_raises(memory_store, embedder, quarry_config):
    store = MagicMock()
    store.health_check.side_effect = RuntimeError("disk gone")
    result = ManagementService(store, memory_store, embedder, quarry_config).health_check()
    assert result == HealthCheckResult(is_healthy=False, message="Health check failed: disk gone")


def test_unexpected_errors_become_storage_errors(memory_store, embedder, quarry_config):
    store = MagicMock()
    store.index_stats.side_effect = RuntimeError("weird")
    with pytest.raises(StorageError, match="weird"):
        ManagementService(store, memory_store, embedder, quarry_config).get_stats()


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


def test_delete_source_requires_confirm(management, indexer, store, tmp_path):
    _index(indexer, tmp_path, "a.md", "text")
    with pytest.raises(ValidationError, match="confirm"):
        management.delete_source("a.md")
    assert store.get_document("a.md") is not None


def test_delete_source_confirmed(management, indexer, store, tmp_path):
    _index(indexer, tmp_path, "a.md", "text")
    assert management.delete_source("a.md", confirm=True) == 1
    assert store.get_document("a.md") is None


def test_delete_source_blank_raises(management):
    with pytest.raises(ValidationError):
        management.delete_source(" ", confirm=True)


@pytest.mark.parametrize("phrase", ["", "purge all", "PURGE", "PURGE ALL "])
def test_purge_wrong_phrase_rejected(management, indexer, store, tmp_path, phrase):
    _index(indexer, tmp_path, "a.md", "text")
    with pytest.raises(ValidationError):
        management.purge_all(phrase)
    assert len(store.list_sources()) == 1


def test_purge_then_list_and_stats_are_empty(management, indexer, tmp_path):
    _index(indexer, tmp_path, "a.md", "text one")
    _index(indexer, tmp_path, "b.md", "text two")

    assert management.purge_all(PURGE_CONFIRM_PHRASE) == 2

    assert management.list_sources() == []
    stats = management.get_stats()
    assert stats.document_count == 0
    assert stats.chunk_count == 0


def test_normalize_defaults_to_cwd(management, store, embedder, tmp_path, monkeypatch):
    project = tmp_path / "handbook"
    project.mkdir()
    monkeypatch.chdir(project)
    Indexer(store, embedder, management.config).index_text(
        "docs/a.md", "text", project_root=tmp_path / "app"
    )

    result = management.normalize_source_paths()

    assert result.renamed == 1
    assert store.get_document("handbook/docs/a.md") is not None


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


def test_create_memory_embeds_content(management, memory_store):
    record = management.create_memory("s1", "procedural", "deploy via staging", tags=["deploy"])
    assert record.id > 0
    results = memory_store.search(
        management.embedder.generate("deploy via staging", 32), limit=1
    )
    assert results[0].memory.id == record.id


def test_create_memory_blank_content_raises(management):
    with pytest.raises(ValidationError):
        management.create_memory("s1", "semantic", "  ")


def test_create_memory_bad_type_raises(management):
    with pytest.raises(ValidationError):
        management.create_memory("s1", "dream", "text")


def test_list_memories_clamps_limit(store, embedder, quarry_config):
    memories = MagicMock()
    memories.list_memories.return_value = []
    service = ManagementService(store, memories, embedder, quarry_config)

    service.list_memories(limit=1000)
    service.list_memories()

    limits = [c.kwargs["limit"] for c in memories.list_memories.call_args_list]
    assert limits == [100, 20]


def test_recall_semantic(management):
    management.create_memory("s1", "semantic", "the cache lives in redis")
    target = management.create_memory("s1", "semantic", "deploys go through staging first")

    recall = management.recall_memories("deploys go through staging first")

    assert not recall.fallback_used
    assert recall.results[0].memory.id == target.id
    assert recall.results[0].score > 0.9


def test_recall_falls_back_to_recent(store, embedder, quarry_config):
    recent = MemoryRecord(id=1, session_id="s1", project_id=None, type="semantic", content="x")
    memories = MagicMock()
    memories.search.return_value = []
    memories.list_memories.return_value = [recent]
    service = ManagementService(store, memories, embedder, quarry_config)

    recall = service.recall_memories("anything", session_id="s1", limit=500)

    assert recall.fallback_used
    assert [(r.memory, r.score) for r in recall.results] == [(recent, 0.0)]
    assert memories.list_memories.call_args.kwargs["limit"] == 50
    assert memories.list_memories.call_args.kwargs["session_id"] == "s1"


def test_recall_nothing_at_all(management):
    recall = management.recall_memories("anything", session_id="nobody")
    assert recall.results == []
    assert not recall.fallback_used


def test_recall_blank_text_raises(management):
    with pytest.raises(ValidationError):
        management.recall_memories(" ")


def test_update_memory_reembeds_only_on_content_change(store, quarry_config):
    memories = MagicMock()
    memories.update.return_value = True
    embedder = MagicMock()
    embedder.generate.return_value = [0.0] * 32
    service = ManagementService(store, memories, embedder, quarry_config)

    service.update_memory(1, tags=["a"])
    embedder.generate.assert_not_called()
    assert memories.update.call_args.kwargs["embedding"] is None

    service.update_memory(1, content="new text")
    embedder.generate.assert_called_once_with("new text", 32)


def test_update_and_delete_memory(management, memory_store):
    record = management.create_memory("s1", "semantic", "old")
    assert management.update_memory(record.id, content="new", tags=["t"])
    loaded = memory_store.get(record.id)
    assert (loaded.content, loaded.tags) == ("new", ["t"])

    assert management.delete_memory(record.id)
    assert not management.delete_memory(record.id)
