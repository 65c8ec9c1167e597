"""Quarry rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_db
    console.print(err_no_db(".quarry.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from quarry.embeddings.litellm_adapter import PROVIDER_ENV_KEYS
from quarry.errors import (
    ConfigError,
    DimensionMismatchError,
    EmbeddingError,
    IndexingError,
    OperationCancelledError,
    QuarryError,
    StorageError,
    ValidationError,
)
from quarry.ingest.web import SsrfError


def err_no_db(db_path: str = ".quarry.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  quarry init   or   quarry index <directory>"
    )


def err_config(message: str) -> str:
    """Configuration could not be loaded or failed validation."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Set:  valid values in quarry.yaml (or ~/.quarry/config.yaml) and retry."
    )


def err_dimension_mismatch(expected: int, actual: int) -> str:
    """Configured vector width differs from the width the index was built with."""
    return (
        "[red]Error:[/] Vector dimension mismatch.\n"
        f"  Database uses:  {expected}\n"
        f"  Config has:     {actual}\n"
        f"  Set:  ingestion.vector_dimensions: {expected}  in quarry.yaml\n"
        "  Or run:  quarry purge  and re-index with the new width."
    )


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*."""
    env_var = PROVIDER_ENV_KEYS.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or use the offline embedder:  ingestion.embedding_provider: hash"
    )


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL."
    )


def err_source_not_found(source: str) -> str:
    """Source not found in database."""
    return (
        f"[yellow]Source not found:[/] '{source}' is not in the index.\n"
        "  Run:  quarry sources  to see all indexed sources."
    )


def err_chunk_not_found(chunk_id: int) -> str:
    return (
        f"[yellow]Chunk not found:[/] no chunk with id {chunk_id}.\n"
        "  Run:  quarry query <text>  to find chunk ids."
    )


def err_memory_not_found(memory_id: int) -> str:
    return (
        f"[yellow]Memory not found:[/] no memory with id {memory_id}.\n"
        "  Run:  quarry memory list  to see stored memories."
    )


def err_purge_phrase() -> str:
    return (
        "[red]Error:[/] Confirmation phrase did not match.\n"
        "  Type exactly:  PURGE ALL"
    )


def format_error(exc: QuarryError | SsrfError, *, url: str | None = None) -> str:
    """Map a Quarry exception to its actionable message."""
    message = exc.args[0] if exc.args else str(exc)
    if isinstance(exc, SsrfError) and url:
        return err_ssrf_blocked(url)
    if isinstance(exc, DimensionMismatchError):
        return err_dimension_mismatch(exc.expected, exc.actual)
    if isinstance(exc, ConfigError):
        return err_config(message)
    if isinstance(exc, EmbeddingError) and "No API key" in message:
        provider = message.split("'")[1] if "'" in message else "unknown"
        return err_no_api_key(provider)
    if isinstance(exc, ValidationError):
        return f"[red]Error:[/] {message}"
    if isinstance(exc, IndexingError):
        return f"[red]Error:[/] {message}\n  Check the path or URL and retry."
    if isinstance(exc, OperationCancelledError):
        return "[yellow]Cancelled.[/] No changes were committed."
    if isinstance(exc, StorageError):
        return f"[red]Database error:[/] {message}\n  Run:  quarry health"
    return f"[red]Error:[/] {message}"
