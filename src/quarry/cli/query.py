"""quarry query / chunk — retrieval commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import Services, build_services, cli_errors, console, setup_logging
from quarry.cli.errors import err_chunk_not_found

_DB_HELP = "Path to the quarry database (default: database.path from quarry.yaml)."


def query_cmd(
    text: Annotated[str, typer.Argument(help="Natural-language query.")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-k", help="Number of results (default from config).")
    ] = None,
    keyword: Annotated[
        bool, typer.Option("--keyword", help="Use BM25 full-text search instead of vectors.")
    ] = False,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Rank indexed chunks against TEXT and show the best matches."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        if keyword:
            _print_keyword_results(services, text, limit)
            return
        results = services.query.query(text, limit)

    if not results:
        console.print("[yellow]No results.[/] Index some content first:  quarry index <dir>")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Chunk", justify="right")
    table.add_column("Snippet", overflow="fold")
    for rank, result in enumerate(results, start=1):
        table.add_row(
            str(rank),
            f"{result.score:.3f}",
            result.source_path,
            f"{result.chunk_index} (id {result.chunk_id})",
            result.snippet(),
        )
    console.print(table)


def _print_keyword_results(services: Services, text: str, limit: int | None) -> None:
    results = services.store.search_text(text, services.query.resolve_limit(limit))
    if not results:
        console.print("[yellow]No keyword matches.[/]")
        return
    for rank, result in enumerate(results, start=1):
        console.print(
            f"{rank}. [bold]{result.source_path}[/] #{result.chunk_index} "
            f"(id {result.chunk_id}, bm25 {result.bm25:.2f})"
        )


def chunk_cmd(
    chunk_id: Annotated[int, typer.Argument(help="Chunk id shown by quarry query.")],
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Print one chunk in full."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        record = services.management.get_chunk(chunk_id)

    if record is None:
        console.print(err_chunk_not_found(chunk_id))
        raise typer.Exit(1)

    console.print(f"[bold]{record.source_path}[/]  chunk {record.chunk_index}")
    console.print(f"[dim]{record.token_count} tokens · indexed {record.indexed_at}[/]\n")
    console.print(record.chunk_text, markup=False, highlight=False)
