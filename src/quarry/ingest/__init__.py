"""Quarry ingest helpers: chunking, file reading and URL fetching."""

from quarry.ingest.chunker import TextChunk, TextChunker, count_tokens
from quarry.ingest.files import read_file_text

__all__ = [
    "TextChunk",
    "TextChunker",
    "count_tokens",
    "read_file_text",
]
