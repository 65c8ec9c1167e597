"""quarry init / index / index-text / index-url / reindex.

Usage:
  quarry init
  quarry index docs/ --project handbook
  quarry index-text notes/standup.md --text "..."      (or --file, or stdin)
  quarry index-url https://example.com/guide --source-path guides/example
  quarry reindex docs/setup.md
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.common import build_services, cli_errors, console, setup_logging
from quarry.config import ensure_global_config
from quarry.errors import IndexingError
from quarry.services.indexer import TextIndexResult

_DB_HELP = "Path to the quarry database (default: database.path from quarry.yaml)."


def init_cmd(
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Create the database and the global config file if missing."""
    setup_logging(verbose)
    with cli_errors():
        global_cfg = ensure_global_config()
        services = build_services(db, create=True)
    console.print(f"[green]✓[/] Database ready: {services.store.database.db_path}")
    console.print(f"  Vector dimensions: {services.config.ingestion.vector_dimensions}")
    console.print(f"  Global config:     {global_cfg}")


def index_cmd(
    directory: Annotated[Path, typer.Argument(help="Directory to index recursively.")],
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Prefix for stored source keys.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Index every eligible file under DIRECTORY (unchanged files are skipped)."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db, create=True)
        with console.status(f"Indexing {directory} …"):
            summary = services.indexer.index_directory(directory, project)

    console.print(
        f"[green]✓[/] Indexed {summary.documents_indexed} documents "
        f"({summary.chunks_indexed} chunks), skipped {summary.documents_skipped}."
    )
    for failed in summary.failed_paths:
        console.print(f"  [yellow]⚠[/] Failed: {failed}")
    if summary.documents_indexed:
        services.manifest.try_sync()


def index_text_cmd(
    source_path: Annotated[str, typer.Argument(help="Key to store the text under.")],
    text: Annotated[str | None, typer.Option("--text", "-t", help="Text to index.")] = None,
    file: Annotated[
        Path | None, typer.Option("--file", "-f", help="Read the text from a file.")
    ] = None,
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Prefix for the stored key.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Index raw text under SOURCE_PATH (from --text, --file or stdin)."""
    setup_logging(verbose)
    with cli_errors():
        if text is None and file is not None:
            text = _read_text_file(file)
        if text is None and not sys.stdin.isatty():
            text = sys.stdin.read()
        services = build_services(db, create=True)
        result = services.indexer.index_text(source_path, text or "", project)
    _print_text_result(result)
    if result.updated:
        services.manifest.try_sync()


def index_url_cmd(
    url: Annotated[str, typer.Argument(help="http(s) URL to fetch and index.")],
    source_path: Annotated[
        str | None, typer.Option("--source-path", "-s", help="Store under this key instead of the URL.")
    ] = None,
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Prefix for the stored key.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Fetch URL (SSRF-guarded), convert to text and index it."""
    setup_logging(verbose)
    with cli_errors(url=url):
        services = build_services(db, create=True)
        result = services.indexer.index_url(url, source_path, project)
    _print_text_result(result)
    if result.updated:
        services.manifest.try_sync()


def reindex_cmd(
    path: Annotated[Path, typer.Argument(help="File to re-read and index.")],
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Prefix for the stored key.")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Re-read one file from disk and index it."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db, create=True)
        result = services.indexer.reindex_file(path, project)
    _print_text_result(result)
    if result.updated:
        services.manifest.try_sync()


def _read_text_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise IndexingError(f"Could not read '{path}': {exc}") from exc


def _print_text_result(result: TextIndexResult) -> None:
    if result.updated:
        console.print(
            f"[green]✓[/] Indexed [bold]{result.source_path}[/] ({result.chunk_count} chunks)"
        )
    else:
        console.print(f"[dim]↷ Unchanged — {result.source_path}[/]")
