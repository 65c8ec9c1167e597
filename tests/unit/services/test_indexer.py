"""Tests for the Indexer: directory crawl, text, URL and single-file entry points."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from quarry.db.models import UpsertStatus
from quarry.errors import (
    EmbeddingError,
    IndexingError,
    OperationCancelledError,
    ValidationError,
)
from quarry.services.indexer import Indexer, compute_sha256


@pytest.fixture
def indexer(store, embedder, quarry_config) -> Indexer:
    return Indexer(store, embedder, quarry_config)


@pytest.fixture
def project(tmp_path) -> Path:
    """A small project tree named 'handbook'."""
    root = tmp_path / "handbook"
    (root / "docs").mkdir(parents=True)
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "docs" / "setup.md").write_text("Install the tool and run setup.", encoding="utf-8")
    (root / "notes.txt").write_text("Standup notes for the week.", encoding="utf-8")
    (root / "node_modules" / "pkg" / "readme.md").write_text("vendored", encoding="utf-8")
    (root / "package-lock.json").write_text("{}", encoding="utf-8")
    (root / "logo.png").write_bytes(b"\x89PNG")
    (root / "empty.md").write_text("   \n", encoding="utf-8")
    return root


# ---------------------------------------------------------------------------
# compute_sha256
# ---------------------------------------------------------------------------


def test_compute_sha256_lower_hex():
    assert compute_sha256("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


# ---------------------------------------------------------------------------
# index_directory
# ---------------------------------------------------------------------------


def test_index_directory_summary(indexer, project, store):
    summary = indexer.index_directory(project, project_root=project)

    assert summary.documents_indexed == 2
    # package-lock.json (generated) + empty.md
    assert summary.documents_skipped == 2
    assert summary.chunks_indexed == 2
    assert sorted(summary.indexed_paths) == ["handbook/docs/setup.md", "handbook/notes.txt"]
    assert summary.failed_paths == []
    assert store.get_document("handbook/docs/setup.md") is not None


def test_index_directory_prunes_excluded_directories(indexer, project, store):
    indexer.index_directory(project, project_root=project)
    assert all("node_modules" not in s.source_path for s in store.list_sources())


def test_index_directory_rerun_skips_unchanged(indexer, project):
    indexer.index_directory(project, project_root=project)
    summary = indexer.index_directory(project, project_root=project)
    assert summary.documents_indexed == 0
    assert summary.documents_skipped == 4
    assert summary.chunks_indexed == 0


def test_index_directory_reindexes_changed_file(indexer, project, store):
    indexer.index_directory(project, project_root=project)
    (project / "notes.txt").write_text("Completely different notes.", encoding="utf-8")

    summary = indexer.index_directory(project, project_root=project)

    assert summary.indexed_paths == ["handbook/notes.txt"]
    chunks = store.get_chunks("handbook/notes.txt")
    assert [c.chunk_text for c in chunks] == ["Completely different notes."]


def test_index_directory_empty_file_is_skip_not_error(indexer, tmp_path):
    root = tmp_path / "handbook"
    root.mkdir()
    (root / "empty.md").write_text("", encoding="utf-8")
    summary = indexer.index_directory(root, project_root=root)
    assert summary.documents_skipped == 1
    assert summary.chunks_indexed == 0
    assert summary.failed_paths == []


def test_index_directory_skips_oversized_files(store, embedder, quarry_config, project):
    quarry_config.ingestion.max_file_size_bytes = 28
    summary = Indexer(store, embedder, quarry_config).index_directory(project, project_root=project)
    # setup.md is 31 bytes; notes.txt is 27 bytes
    assert summary.indexed_paths == ["handbook/notes.txt"]


def test_index_directory_bad_file_does_not_abort_batch(indexer, project):
    bad = project / "docs" / "broken.md"
    bad.write_bytes(b"\xff\xfe\xfa not utf-8")

    summary = indexer.index_directory(project, project_root=project)

    assert summary.documents_indexed == 2
    assert summary.failed_paths == [str(bad)]
    assert summary.documents_skipped == 3


def test_index_directory_embedding_failure_aborts(store, quarry_config, project):
    embedder = MagicMock()
    embedder.generate.side_effect = EmbeddingError("provider down")
    with pytest.raises(EmbeddingError):
        Indexer(store, embedder, quarry_config).index_directory(project, project_root=project)


def test_index_directory_cancelled(indexer, project, store):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelledError):
        indexer.index_directory(project, project_root=project, cancel=cancel)
    assert store.list_sources() == []


def test_index_directory_missing_root_raises(indexer, tmp_path):
    with pytest.raises(IndexingError, match="does not exist"):
        indexer.index_directory(tmp_path / "missing")


def test_index_directory_project_name_prefix(indexer, project):
    summary = indexer.index_directory(project, "kb", project_root=project)
    assert "kb/handbook/notes.txt" in summary.indexed_paths


def test_index_directory_outside_project_root_keys_on_source_root(indexer, project, tmp_path):
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    summary = indexer.index_directory(project, project_root=elsewhere)
    assert "handbook/notes.txt" in summary.indexed_paths


# ---------------------------------------------------------------------------
# is_generated_file
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("name", [
    "package-lock.json",
    "yarn.lock",
    "poetry.lock",
    "app.min.js",
    "site.min.css",
    "app.js.map",
    "Api.generated.cs",
    "Model.g.cs",
    "main.bundle.js",
    "vendor-chunk.js",
    "app.3f9a1c2b.js",
])
def test_is_generated_file_true(indexer, name):
    assert indexer.is_generated_file(name)


@pytest.mark.parametrize("name", [
    "chunker.py",
    "bundle_notes.md",
    "readme.md",
    "app.js",
    "index.abcdef.js",
    "settings.json",
])
def test_is_generated_file_false(indexer, name):
    assert not indexer.is_generated_file(name)


# ---------------------------------------------------------------------------
# index_text
# ---------------------------------------------------------------------------


def test_index_text_new_then_unchanged(indexer, tmp_path):
    root = tmp_path / "app"
    first = indexer.index_text("notes/standup.md", "Ship the release on Friday.", project_root=root)
    second = indexer.index_text("notes/standup.md", "Ship the release on Friday.", project_root=root)

    assert first.source_path == "notes/standup.md"
    assert first.status is UpsertStatus.UPDATED
    assert first.updated
    assert first.chunk_count == 1
    assert first.content_hash == compute_sha256("Ship the release on Friday.")
    assert second.status is UpsertStatus.UNCHANGED
    assert not second.updated


def test_index_text_changed_content_replaces_chunks(indexer, store, tmp_path):
    root = tmp_path / "app"
    long_text = " ".join(f"word{i}" for i in range(60))
    indexer.index_text("doc", long_text, project_root=root)
    assert len(store.get_chunks("doc")) == 4

    indexer.index_text("doc", "short now", project_root=root)

    chunks = store.get_chunks("doc")
    assert [c.chunk_text for c in chunks] == ["short now"]


def test_index_text_project_prefix(indexer, tmp_path):
    result = indexer.index_text("standup.md", "text", "notes", project_root=tmp_path / "app")
    assert result.source_path == "notes/standup.md"


def test_index_text_keys_relative_to_named_project(indexer, tmp_path):
    result = indexer.index_text("docs/a.md", "text", project_root=tmp_path / "handbook")
    assert result.source_path == "handbook/docs/a.md"


@pytest.mark.parametrize("key,content", [("", "text"), ("  ", "text"), ("k", ""), ("k", " \n ")])
def test_index_text_blank_input_raises(indexer, key, content):
    with pytest.raises(ValidationError):
        indexer.index_text(key, content)


def test_index_text_no_chunks_raises(store, embedder, quarry_config):
    chunker = MagicMock()
    chunker.chunk.return_value = iter([])
    indexer = Indexer(store, embedder, quarry_config, chunker=chunker)
    with pytest.raises(IndexingError, match="No indexable chunks"):
        indexer.index_text("k", "text")


# ---------------------------------------------------------------------------
# index_url
# ---------------------------------------------------------------------------


def test_index_url_uses_url_as_key(indexer, store):
    with patch("quarry.services.indexer.fetch_text", return_value="Install guide body."):
        result = indexer.index_url("https://example.com/guide")
    assert result.source_path == "https://example.com/guide"
    assert store.get_document("https://example.com/guide") is not None


def test_index_url_source_path_override(indexer, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with patch("quarry.services.indexer.fetch_text", return_value="Install guide body."):
        result = indexer.index_url("https://example.com/guide", source_path="guides/example")
    assert result.source_path.endswith("guides/example")


def test_index_url_project_name_does_not_prefix_urls(indexer):
    with patch("quarry.services.indexer.fetch_text", return_value="Body."):
        result = indexer.index_url("https://example.com/guide", project_name="kb")
    assert result.source_path == "https://example.com/guide"


def test_index_url_empty_page_raises(indexer):
    with patch("quarry.services.indexer.fetch_text", return_value="  "):
        with pytest.raises(IndexingError, match="no text"):
            indexer.index_url("https://example.com/empty")


def test_index_url_blank_url_raises(indexer):
    with pytest.raises(ValidationError):
        indexer.index_url("  ")


# ---------------------------------------------------------------------------
# reindex_file
# ---------------------------------------------------------------------------


def test_reindex_file(indexer, project, store):
    result = indexer.reindex_file(project / "docs" / "setup.md", project_root=project)
    assert result.source_path == "handbook/docs/setup.md"
    assert result.updated
    assert store.get_document("handbook/docs/setup.md") is not None


def test_reindex_file_missing_raises(indexer, tmp_path):
    with pytest.raises(IndexingError, match="does not exist"):
        indexer.reindex_file(tmp_path / "nope.md")


def test_reindex_file_unreadable_raises(indexer, tmp_path):
    bad = tmp_path / "bad.md"
    bad.write_bytes(b"\xff\xfe\xfa")
    with pytest.raises(IndexingError, match="Could not read"):
        indexer.reindex_file(bad, project_root=tmp_path)
