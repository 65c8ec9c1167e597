"""quarry memory — scoped notes with semantic recall.

Usage:
  quarry memory add "Deploys go through staging first" --session s1 --type procedural --tag deploy
  quarry memory list --session s1
  quarry memory recall "how do we deploy" --session s1
  quarry memory update 3 --content "..." --tag deploy --tag ci
  quarry memory delete 3
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.common import build_services, cli_errors, console, setup_logging
from quarry.cli.errors import err_memory_not_found
from quarry.db.models import MemorySearchResult, make_snippet

memory_app = typer.Typer(help="Store and recall memories.", no_args_is_help=True)

_DB_HELP = "Path to the quarry database (default: database.path from quarry.yaml)."


@memory_app.command("add")
def add_cmd(
    content: Annotated[str, typer.Argument(help="Memory text.")],
    session: Annotated[str, typer.Option("--session", "-s", help="Session id.")],
    memory_type: Annotated[
        str, typer.Option("--type", help="episodic | semantic | procedural.")
    ] = "semantic",
    tag: Annotated[list[str] | None, typer.Option("--tag", help="Tag (repeatable).")] = None,
    project: Annotated[str | None, typer.Option("--project", "-p", help="Project id.")] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Store a new memory."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db, create=True)
        record = services.management.create_memory(
            session, memory_type, content, tags=tag, project_id=project
        )
    console.print(f"[green]✓[/] Stored {record.type} memory #{record.id}")


@memory_app.command("list")
def list_cmd(
    session: Annotated[str | None, typer.Option("--session", "-s", help="Session id.")] = None,
    memory_type: Annotated[str | None, typer.Option("--type", help="Memory type.")] = None,
    tag: Annotated[str | None, typer.Option("--tag", help="Only memories with this tag.")] = None,
    project: Annotated[str | None, typer.Option("--project", "-p", help="Project id.")] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="1-100, default 20.")] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """List memories, newest first."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        records = services.management.list_memories(
            memory_type=memory_type,
            tag=tag,
            session_id=session,
            project_id=project,
            limit=limit,
        )
    _print_memories([MemorySearchResult(memory=r, score=0.0) for r in records], scored=False)


@memory_app.command("recall")
def recall_cmd(
    text: Annotated[str, typer.Argument(help="What to recall.")],
    session: Annotated[str | None, typer.Option("--session", "-s", help="Session id.")] = None,
    memory_type: Annotated[str | None, typer.Option("--type", help="Memory type.")] = None,
    tag: Annotated[str | None, typer.Option("--tag", help="Only memories with this tag.")] = None,
    project: Annotated[str | None, typer.Option("--project", "-p", help="Project id.")] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="1-50, default 10.")] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Rank memories by similarity to TEXT."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        recall = services.management.recall_memories(
            text,
            memory_type=memory_type,
            tag=tag,
            session_id=session,
            project_id=project,
            limit=limit,
        )
    if recall.fallback_used:
        console.print("[dim]No semantic matches; showing most recent memories.[/]")
    _print_memories(recall.results, scored=not recall.fallback_used)


@memory_app.command("update")
def update_cmd(
    memory_id: Annotated[int, typer.Argument(help="Memory id.")],
    content: Annotated[str | None, typer.Option("--content", help="New text.")] = None,
    memory_type: Annotated[str | None, typer.Option("--type", help="New type.")] = None,
    tag: Annotated[
        list[str] | None, typer.Option("--tag", help="Replace tags (repeatable).")
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Change a memory's content, type or tags."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        updated = services.management.update_memory(
            memory_id, memory_type=memory_type, content=content, tags=tag
        )
    if not updated:
        console.print(err_memory_not_found(memory_id))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Updated memory #{memory_id}")


@memory_app.command("delete")
def delete_cmd(
    memory_id: Annotated[int, typer.Argument(help="Memory id.")],
    db: Annotated[Path | None, typer.Option("--db", help=_DB_HELP)] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
) -> None:
    """Delete a memory."""
    setup_logging(verbose)
    with cli_errors():
        services = build_services(db)
        deleted = services.management.delete_memory(memory_id)
    if not deleted:
        console.print(err_memory_not_found(memory_id))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Deleted memory #{memory_id}")


def _print_memories(results: list[MemorySearchResult], *, scored: bool) -> None:
    if not results:
        console.print("[dim]No memories found.[/]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Type")
    if scored:
        table.add_column("Score", justify="right")
    table.add_column("Tags")
    table.add_column("Content", overflow="fold")
    for result in results:
        memory = result.memory
        row = [str(memory.id), memory.type]
        if scored:
            row.append(f"{result.score:.3f}")
        row += [", ".join(memory.tags), make_snippet(memory.content, 120)]
        table.add_row(*row)
    console.print(table)
