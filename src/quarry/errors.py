"""Quarry domain exceptions.

Every error carries a stable ``code`` so callers (CLI, tool adapters) can map
failures without string matching:

  QuarryError                 base, code = "QUARRY_ERROR"
  ├── ConfigError             invalid configuration, fatal at startup
  ├── ValidationError         bad caller input, raised before any I/O
  ├── StorageError            wrapped sqlite3 failures
  │   └── DimensionMismatchError
  ├── IndexingError           nothing indexable / missing root
  ├── QueryError              unexpected failure while answering a query
  ├── EmbeddingError          embedding backend failure
  └── OperationCancelledError cooperative cancellation observed
"""

from __future__ import annotations


class QuarryError(Exception):
    """Base class for all Quarry errors."""

    code: str = "QUARRY_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"[{self.code}] {self.args[0]}"


class ConfigError(QuarryError, ValueError):
    """Raised when configuration values are missing, malformed or out of range."""

    code = "CONFIG_ERROR"


class ValidationError(QuarryError, ValueError):
    """Raised when caller input is rejected (blank text, non-positive limits...)."""

    code = "VALIDATION_ERROR"


class StorageError(QuarryError):
    """Raised when a database operation fails."""

    code = "DB_ERROR"


class DimensionMismatchError(StorageError):
    """Raised when a vector width differs from the width the index was created with."""

    code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector dimension mismatch: index uses {expected}, got {actual}."
        )
        self.expected = expected
        self.actual = actual


class IndexingError(QuarryError):
    """Raised when a source cannot be indexed at all."""

    code = "INDEX_ERROR"


class QueryError(QuarryError):
    """Raised when query execution fails unexpectedly."""

    code = "QUERY_ERROR"


class EmbeddingError(QuarryError):
    """Raised when an embedding backend fails or returns an unusable vector."""

    code = "EMBEDDING_ERROR"


class OperationCancelledError(QuarryError):
    """Raised when a cancellation signal is observed mid-operation."""

    code = "CANCELLED"
