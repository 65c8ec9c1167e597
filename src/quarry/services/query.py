"""Query service: embed a question and rank stored chunks against it."""

from __future__ import annotations

import logging
import time

from quarry.config import QuarryConfig
from quarry.db.models import SearchResult
from quarry.db.repository import ContentStore
from quarry.embeddings.base import EmbeddingGenerator
from quarry.errors import QuarryError, QueryError, ValidationError

logger = logging.getLogger(__name__)

_SLOW_QUERY_MS = 1000.0


class QueryService:
    """Similarity search over the content store.

    The query is embedded with the same generator and width used at indexing
    time; a width mismatch surfaces from the store as DimensionMismatchError.

    Args:
        store: Content store to search.
        embedder: Embedding generator (must match the one used to index).
        config: Retrieval limits and vector width.
    """

    def __init__(
        self,
        store: ContentStore,
        embedder: EmbeddingGenerator,
        config: QuarryConfig,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.config = config

    def query(self, text: str, top_k: int | None = None) -> list[SearchResult]:
        """Return up to *top_k* chunks ranked by similarity to *text*.

        Args:
            text: Natural-language query; must not be blank.
            top_k: Result count. Defaults to ``retrieval.default_top_k`` and
                is capped at ``retrieval.max_top_k``.

        Raises:
            ValidationError: Blank text or non-positive *top_k*.
            QueryError: Unexpected failure outside the Quarry error hierarchy.
        """
        if not text or not text.strip():
            raise ValidationError("Query text must not be empty")
        limit = self.resolve_limit(top_k)

        started = time.perf_counter()
        try:
            embedding = self.embedder.generate(text, self.config.ingestion.vector_dimensions)
            results = self.store.search(embedding, limit)
        except QuarryError:
            raise
        except Exception as exc:
            logger.exception("Query failed: %r", text)
            raise QueryError(f"Failed to execute query: {exc}") from exc

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("Query returned %d results in %.1f ms", len(results), elapsed_ms)
        if elapsed_ms > _SLOW_QUERY_MS:
            logger.warning("Slow query detected (%.1f ms): %r", elapsed_ms, text[:80])
        return results

    def search_similar(self, text: str, limit: int | None = None) -> list[SearchResult]:
        """Similarity search without source scoping (same ranking as query())."""
        return self.query(text, limit)

    def resolve_limit(self, top_k: int | None) -> int:
        """Apply the configured default and ceiling to a requested result count."""
        retrieval = self.config.retrieval
        limit = retrieval.default_top_k if top_k is None else top_k
        if limit <= 0:
            raise ValidationError(f"top_k must be > 0, got {limit}")
        return min(limit, retrieval.max_top_k)
