"""Embedding capability shared by indexing and querying."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Anything that maps text to a fixed-width vector.

    Implementations must be deterministic for a given ``(text, dimensions)``
    and must return exactly ``dimensions`` floats: the vector width is fixed
    when the index is created.
    """

    def generate(self, text: str, dimensions: int) -> list[float]: ...
