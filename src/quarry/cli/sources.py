"""quarry sources / stats / delete / purge / normalize / health — index maintenance.

Usage:
  quarry sources --limit 20
  quarry stats --size
  quarry delete handbook/docs/old.md            (asks for confirmation)
  quarry delete handbook/docs/old.md --yes
  quarry purge                                   (type PURGE ALL to confirm)
  quarry normalize --root .
  quarry health
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import build_services, cli_errors, console, setup_logging
from quarry.cli.errors import err_purge_phrase, err_source_not_found
from quarry.pathing import normalize_for_storage
from quarry.services.management import PURGE_CONFIRM_PHRASE

_DB_HELP = "Path to the quarry database (default: database.path from quarry.yaml)."


def sources_cmd(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum sources to list.")] = 100,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """List indexed sources, most recently indexed first."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        sources = services.management.list_sources(limit)

    if not sources:
        console.print("[dim]No sources indexed.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Source", overflow="fold")
    table.add_column("Chunks", justify="right")
    table.add_column("Indexed (UTC)")
    for source in sources:
        table.add_row(source.source_path, str(source.chunk_count), source.indexed_at[:19])
    console.print(table)


def stats_cmd(
    size: Annotated[bool, typer.Option("--size", help="Include database file size.")] = False,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Show document, chunk and token totals."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        stats = services.management.get_stats(include_size=size)

    console.print(f"Documents:  {stats.document_count}")
    console.print(f"Chunks:     {stats.chunk_count}")
    console.print(f"Tokens:     {stats.total_tokens}")
    console.print(f"Projects:   {stats.project_count}")
    console.print(f"Oldest:     {stats.oldest_indexed_at or '-'}")
    console.print(f"Newest:     {stats.newest_indexed_at or '-'}")
    if stats.index_size_bytes is not None:
        console.print(f"Size:       {stats.index_size_bytes / 1024:.1f} KiB")


def delete_cmd(
    source: Annotated[
        str, typer.Argument(help="Source key or path, resolved like indexing (see quarry sources).")
    ],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Remove one source with its chunks and vectors.

    SOURCE is resolved to its stored key the same way indexing does, so
    ``docs/a.md`` typed inside ``handbook/`` removes ``handbook/docs/a.md``.
    """
    setup_logging(verbose)
    source = normalize_for_storage(source, os.getcwd())
    with cli_errors():
        services = build_services(db)
        document = services.store.get_document(source)
        if document is None:
            console.print(err_source_not_found(source))
            raise typer.Exit(0)

        chunk_count = len(services.store.get_chunks(source))
        console.print(f"\nRemove source: [bold]{source}[/]  ({chunk_count} chunks)")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        services.management.delete_source(source, confirm=True)

    console.print(f"[green]✓[/] Removed: {source}")
    services.manifest.try_sync()


def purge_cmd(
    phrase: Annotated[
        str | None,
        typer.Option("--confirm-phrase", help=f"Skip the prompt by passing '{PURGE_CONFIRM_PHRASE}'."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Delete every indexed document (memories are kept)."""
    setup_logging(verbose)
    if phrase is None:
        phrase = typer.prompt(f"Type {PURGE_CONFIRM_PHRASE} to delete every indexed document")
    if phrase != PURGE_CONFIRM_PHRASE:
        console.print(err_purge_phrase())
        raise typer.Exit(1)

    with cli_errors():
        services = build_services(db)
        removed = services.management.purge_all(phrase)
    console.print(f"[green]✓[/] Purged {removed} documents.")
    services.manifest.try_sync()


def normalize_cmd(
    root: Annotated[
        Path | None, typer.Option("--root", help="Project root (default: current directory).")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Rewrite stored keys to canonical form and remove duplicates."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        result = services.management.normalize_source_paths(root.resolve() if root else None)
    console.print(
        f"[green]✓[/] Renamed {result.renamed}, removed {result.duplicates_removed} duplicates."
    )
    if result.renamed or result.duplicates_removed:
        services.manifest.try_sync()


def health_cmd(
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Check that the database can be opened and queried."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
    result = services.management.health_check()
    if result.is_healthy:
        console.print(f"[green]✓[/] {result.message}")
        return
    console.print(f"[red]✗[/] {result.message}")
    raise typer.Exit(1)
