"""Shared CLI plumbing: logging, config + service wiring, error rendering."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from quarry.cli.errors import err_no_db, format_error
from quarry.config import QuarryConfig, load_config
from quarry.db.connection import Database
from quarry.db.memories import MemoryStore
from quarry.db.repository import ContentStore
from quarry.embeddings import build_embedding_generator
from quarry.embeddings.base import EmbeddingGenerator
from quarry.errors import QuarryError
from quarry.ingest.web import SsrfError
from quarry.services.indexer import Indexer
from quarry.services.management import ManagementService
from quarry.services.manifest import SourcesManifest
from quarry.services.query import QueryService

console = Console()


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


@dataclass
class Services:
    """Everything a command needs, wired from one QuarryConfig."""

    config: QuarryConfig
    store: ContentStore
    memories: MemoryStore
    embedder: EmbeddingGenerator
    indexer: Indexer
    query: QueryService
    management: ManagementService
    manifest: SourcesManifest


def build_services(db: Path | None, *, create: bool = False) -> Services:
    """Load config, apply the --db override and initialise the schema.

    Args:
        db: ``--db`` flag value; overrides ``database.path`` when given.
        create: Create the database when missing. Otherwise a missing
            database prints an actionable error and exits 1.
    """
    config = load_config(Path.cwd())
    if db is not None:
        config.database.path = str(db)

    db_path = Path(config.database.path)
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    dimensions = config.ingestion.vector_dimensions
    database = Database(db_path)
    store = ContentStore(database, dimensions)
    store.init_schema()
    memories = MemoryStore(database, dimensions)
    embedder = build_embedding_generator(config)

    return Services(
        config=config,
        store=store,
        memories=memories,
        embedder=embedder,
        indexer=Indexer(store, embedder, config),
        query=QueryService(store, embedder, config),
        management=ManagementService(store, memories, embedder, config),
        manifest=SourcesManifest(store, config),
    )


@contextmanager
def cli_errors(*, url: str | None = None) -> Iterator[None]:
    """Render Quarry errors as actionable messages and exit 1."""
    try:
        yield
    except (QuarryError, SsrfError) as exc:
        console.print(format_error(exc, url=url))
        raise typer.Exit(1) from exc
