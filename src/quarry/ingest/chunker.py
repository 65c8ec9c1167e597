"""Whitespace-token sliding-window chunker."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

from quarry.errors import ValidationError

_TOKEN_RE = re.compile(r"\S+")


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str
    token_count: int


def count_tokens(text: str) -> int:
    """Number of whitespace-delimited tokens in *text*."""
    return len(_TOKEN_RE.findall(text))


class TextChunker:
    """Split text into overlapping windows of whitespace tokens.

    Each window holds ``chunk_size`` tokens and starts ``chunk_size - overlap``
    tokens after the previous one. The window that reaches the last token is
    the final one, so every token lands in at least one chunk. Chunk text is
    the slice of the source between the window's first and last token, which
    keeps line breaks and indentation intact.
    """

    def chunk(self, text: str, chunk_size: int, overlap: int) -> Iterator[TextChunk]:
        """Return a single-pass iterator of chunks for *text*.

        Args:
            text: Raw document text.
            chunk_size: Tokens per window (> 0).
            overlap: Tokens shared by consecutive windows (0 <= overlap < chunk_size).

        Returns:
            Iterator of TextChunk with sequential ``index`` from 0. Blank text
            yields nothing.

        Raises:
            ValidationError: Raised immediately (not on first iteration) when
                the window parameters could not make forward progress.
        """
        if chunk_size <= 0:
            raise ValidationError(f"chunk_size must be > 0, got {chunk_size}")
        if overlap < 0:
            raise ValidationError(f"overlap must be >= 0, got {overlap}")
        if overlap >= chunk_size:
            raise ValidationError(
                f"overlap must be less than chunk_size ({overlap} >= {chunk_size})"
            )
        return self._windows(text or "", chunk_size, overlap)

    @staticmethod
    def _windows(text: str, chunk_size: int, overlap: int) -> Iterator[TextChunk]:
        normalized = text.replace("\r\n", "\n")
        spans = [m.span() for m in _TOKEN_RE.finditer(normalized)]
        if not spans:
            return

        step = chunk_size - overlap
        index = 0
        start = 0
        while True:
            end = min(start + chunk_size, len(spans))
            yield TextChunk(
                index=index,
                text=normalized[spans[start][0]:spans[end - 1][1]],
                token_count=end - start,
            )
            if end >= len(spans):
                break
            index += 1
            start += step
