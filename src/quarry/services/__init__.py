"""Quarry services: indexing, querying, maintenance and the sources manifest."""

from quarry.services.indexer import Indexer, IndexSummary, TextIndexResult
from quarry.services.management import ManagementService, MemoryRecall
from quarry.services.manifest import SourcesManifest
from quarry.services.query import QueryService

__all__ = [
    "Indexer",
    "IndexSummary",
    "ManagementService",
    "MemoryRecall",
    "QueryService",
    "SourcesManifest",
    "TextIndexResult",
]
