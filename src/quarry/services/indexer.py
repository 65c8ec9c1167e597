"""Indexing pipeline: files, raw text and URLs into the content store.

Every entry point follows the same path: chunk → embed each chunk → hash the
whole text → ContentStore.upsert_document() under a canonical source key.
The directory crawl is sequential and tolerant of per-file failures; the
single-item entry points fail fast.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from pypdf.errors import PdfReadError

from quarry.config import QuarryConfig
from quarry.db.connection import check_cancelled
from quarry.db.models import ChunkEmbedding, UpsertStatus
from quarry.db.repository import ContentStore
from quarry.embeddings.base import EmbeddingGenerator
from quarry.errors import (
    EmbeddingError,
    IndexingError,
    OperationCancelledError,
    StorageError,
    ValidationError,
)
from quarry.ingest.chunker import TextChunker
from quarry.ingest.files import read_file_text
from quarry.ingest.web import fetch_text
from quarry.pathing import (
    apply_project_prefix,
    is_path_under_root,
    normalize_for_storage,
)

logger = logging.getLogger(__name__)

# Failures that say nothing about the individual file and abort the crawl.
_FATAL_ERRORS = (StorageError, EmbeddingError, OperationCancelledError)

# Name markers of bundler output, applied to web assets only.
_WEB_ASSET_EXTENSIONS = frozenset([".js", ".mjs", ".cjs", ".css"])
_BUNDLE_MARKERS = ("bundle", "chunk")


@dataclass
class IndexSummary:
    """Running totals of one directory crawl."""

    documents_indexed: int = 0
    documents_skipped: int = 0
    chunks_indexed: int = 0
    indexed_paths: list[str] = field(default_factory=list)
    failed_paths: list[str] = field(default_factory=list)


@dataclass
class TextIndexResult:
    """Outcome of indexing one text under one key."""

    source_path: str
    status: UpsertStatus
    chunk_count: int
    content_hash: str

    @property
    def updated(self) -> bool:
        return self.status is UpsertStatus.UPDATED


def compute_sha256(text: str) -> str:
    """SHA-256 hex digest of *text* encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Indexer:
    """Coordinates chunking, embedding and persistence.

    Args:
        store: Content store (schema must be initialised).
        embedder: Embedding generator shared with the query service.
        config: Chunking, dimension and crawl-filter settings.
        chunker: Override the chunker (tests).
    """

    def __init__(
        self,
        store: ContentStore,
        embedder: EmbeddingGenerator,
        config: QuarryConfig,
        *,
        chunker: TextChunker | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config
        self.chunker = chunker or TextChunker()

    # ------------------------------------------------------------------
    # Directory crawl
    # ------------------------------------------------------------------

    def index_directory(
        self,
        root: Path | str,
        project_name: str | None = None,
        *,
        project_root: Path | str | None = None,
        cancel: threading.Event | None = None,
    ) -> IndexSummary:
        """Index every eligible file under *root*, one file at a time.

        Excluded directories are not descended into. Generated files,
        oversized files, empty files and unchanged files count as skipped;
        files with other extensions are ignored. A file that fails to read
        or chunk is logged and counted as skipped; storage, embedding and
        cancellation errors abort the crawl.

        Args:
            root: Directory to crawl.
            project_name: Optional explicit prefix for every stored key.
            project_root: Directory keys are made relative to. Defaults to
                the current working directory; files outside it are keyed
                relative to *root*.
            cancel: Optional cancellation signal, checked before each file.

        Raises:
            IndexingError: If *root* is not an existing directory.
        """
        source_root = Path(root).expanduser().resolve()
        if not source_root.is_dir():
            logger.error("Source directory does not exist: %s", root)
            raise IndexingError(f"Source directory does not exist: {root}")
        key_root = Path(project_root).resolve() if project_root is not None else Path.cwd()

        logger.info("Starting index of directory: %s", source_root)
        summary = IndexSummary()

        for path in self._iter_files(source_root, summary):
            check_cancelled(cancel)
            try:
                self._index_file(path, source_root, key_root, project_name, summary, cancel)
            except _FATAL_ERRORS:
                raise
            except Exception:
                logger.exception("Error indexing file: %s", path)
                summary.documents_skipped += 1
                summary.failed_paths.append(str(path))

        logger.info(
            "Index complete: %d documents indexed, %d chunks, %d skipped",
            summary.documents_indexed,
            summary.chunks_indexed,
            summary.documents_skipped,
        )
        return summary

    def _iter_files(self, source_root: Path, summary: IndexSummary) -> Iterator[Path]:
        ing = self.config.ingestion
        excluded_dirs = {d.lower() for d in ing.exclude_directories}
        extensions = {e.lower() for e in ing.include_extensions}

        for dirpath, dirnames, filenames in os.walk(source_root):
            dirnames[:] = sorted(d for d in dirnames if d.lower() not in excluded_dirs)
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if self.is_generated_file(name):
                    logger.debug("Skipping file (generated): %s", path)
                    summary.documents_skipped += 1
                    continue
                if path.suffix.lower() not in extensions:
                    continue
                yield path

    def _index_file(
        self,
        path: Path,
        source_root: Path,
        key_root: Path,
        project_name: str | None,
        summary: IndexSummary,
        cancel: threading.Event | None,
    ) -> None:
        size = path.stat().st_size
        if size > self.config.ingestion.max_file_size_bytes:
            logger.debug("Skipping file (too large): %s (%d bytes)", path, size)
            summary.documents_skipped += 1
            return

        content = read_file_text(path)
        if not content.strip():
            logger.debug("Skipping file (empty): %s", path)
            summary.documents_skipped += 1
            return

        chunks = self._embed_chunks(content)
        if not chunks:
            logger.debug("Skipping file (no chunks): %s", path)
            summary.documents_skipped += 1
            return

        base = str(key_root) if is_path_under_root(str(path), str(key_root)) else str(source_root)
        source_path = apply_project_prefix(normalize_for_storage(str(path), base), project_name)
        status = self.store.upsert_document(
            source_path, compute_sha256(content), chunks, cancel=cancel
        )
        if status is UpsertStatus.UNCHANGED:
            logger.debug("Skipping file (unchanged): %s", path)
            summary.documents_skipped += 1
            return

        logger.info("Indexed document: %s (%d chunks)", source_path, len(chunks))
        summary.documents_indexed += 1
        summary.chunks_indexed += len(chunks)
        summary.indexed_paths.append(source_path)

    def is_generated_file(self, file_name: str) -> bool:
        """True for lockfiles, minified/bundled assets and hashed build output."""
        ing = self.config.ingestion
        lowered = file_name.lower()
        if lowered in {n.lower() for n in ing.exclude_file_names}:
            return True
        if any(lowered.endswith(s.lower()) for s in ing.exclude_file_suffixes):
            return True
        if ".generated." in lowered or ".g." in lowered:
            return True
        if Path(lowered).suffix in _WEB_ASSET_EXTENSIONS:
            if any(marker in lowered for marker in _BUNDLE_MARKERS):
                return True
            return _has_hash_marker(lowered)
        return False

    # ------------------------------------------------------------------
    # Single-item entry points
    # ------------------------------------------------------------------

    def index_text(
        self,
        source_path: str,
        content: str,
        project_name: str | None = None,
        *,
        project_root: Path | str | None = None,
        cancel: threading.Event | None = None,
    ) -> TextIndexResult:
        """Index *content* under the key *source_path*.

        The key is normalised against *project_root* (default: CWD) and then
        prefixed with *project_name* when given.

        Raises:
            ValidationError: Blank key or content.
            IndexingError: The content produced no chunks.
        """
        if not source_path or not source_path.strip():
            raise ValidationError("source_path must not be empty")
        if not content or not content.strip():
            raise ValidationError("content must not be empty")

        chunks = self._embed_chunks(content)
        if not chunks:
            raise IndexingError(f"No indexable chunks produced for '{source_path}'")

        root = str(project_root) if project_root is not None else os.getcwd()
        key = apply_project_prefix(normalize_for_storage(source_path, root), project_name)
        content_hash = compute_sha256(content)
        status = self.store.upsert_document(key, content_hash, chunks, cancel=cancel)
        logger.info("Indexed text: %s (%s, %d chunks)", key, status.value, len(chunks))
        return TextIndexResult(
            source_path=key,
            status=status,
            chunk_count=len(chunks),
            content_hash=content_hash,
        )

    def index_url(
        self,
        url: str,
        source_path: str | None = None,
        project_name: str | None = None,
    ) -> TextIndexResult:
        """Fetch *url* and index its text under *source_path* (default: the URL)."""
        if not url or not url.strip():
            raise ValidationError("url must not be empty")
        text = fetch_text(url.strip())
        if not text.strip():
            raise IndexingError(f"URL returned no text content: {url}")
        key = source_path.strip() if source_path and source_path.strip() else url.strip()
        return self.index_text(key, text, project_name)

    def reindex_file(
        self,
        path: Path | str,
        project_name: str | None = None,
        *,
        project_root: Path | str | None = None,
    ) -> TextIndexResult:
        """Re-read one file from disk and index it under its canonical key."""
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            raise IndexingError(f"File does not exist: {path}")
        try:
            content = read_file_text(file_path)
        except (OSError, UnicodeDecodeError, PdfReadError) as exc:
            raise IndexingError(f"Could not read '{path}': {exc}") from exc
        return self.index_text(
            str(file_path.resolve()), content, project_name, project_root=project_root
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _embed_chunks(self, content: str) -> list[ChunkEmbedding]:
        ing = self.config.ingestion
        return [
            ChunkEmbedding(
                chunk_index=chunk.index,
                chunk_text=chunk.text,
                token_count=chunk.token_count,
                embedding=self.embedder.generate(chunk.text, ing.vector_dimensions),
            )
            for chunk in self.chunker.chunk(content, ing.chunk_size, ing.chunk_overlap)
        ]


def _has_hash_marker(file_name: str) -> bool:
    """Detect hashed bundle names like ``app.a1b2c3d4.js``."""
    stem, dot, _ = file_name.rpartition(".")
    if not dot or not stem:
        return False
    _, inner_dot, marker = stem.rpartition(".")
    if not inner_dot:
        return False
    return len(marker) >= 6 and marker.isalnum() and any(c.isdigit() for c in marker)
