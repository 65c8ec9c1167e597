"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from quarry.cli.index import index_cmd, index_text_cmd, index_url_cmd, init_cmd, reindex_cmd
from quarry.cli.memory import memory_app
from quarry.cli.query import chunk_cmd, query_cmd
from quarry.cli.sources import (
    delete_cmd,
    health_cmd,
    normalize_cmd,
    purge_cmd,
    sources_cmd,
    stats_cmd,
)


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry — local semantic search over your files, notes and web pages.\n\n"
        "  quarry index <dir>    Chunk, embed and store every eligible file.\n"
        "  quarry query <text>   Rank stored chunks by similarity."
    ),
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Quarry — local semantic search."""


app.command("init")(init_cmd)
app.command("index")(index_cmd)
app.command("index-text")(index_text_cmd)
app.command("index-url")(index_url_cmd)
app.command("reindex")(reindex_cmd)
app.command("query")(query_cmd)
app.command("chunk")(chunk_cmd)
app.command("sources")(sources_cmd)
app.command("stats")(stats_cmd)
app.command("delete")(delete_cmd)
app.command("purge")(purge_cmd)
app.command("normalize")(normalize_cmd)
app.command("health")(health_cmd)
app.add_typer(memory_app, name="memory")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()
