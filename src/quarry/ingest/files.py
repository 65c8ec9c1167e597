"""Read indexable text from files on disk.

Plain-text formats are decoded as UTF-8. PDFs are extracted page by page via
pypdf; pages that yield no text (scanned images, etc.) are skipped.
"""

from __future__ import annotations

from pathlib import Path

import pypdf

PDF_EXTENSION = ".pdf"


def read_file_text(path: Path) -> str:
    """Return the text content of *path*.

    Raises:
        OSError: The file could not be opened.
        UnicodeDecodeError: A text file is not valid UTF-8.
        pypdf.errors.PdfReadError: The PDF is malformed.
    """
    if path.suffix.lower() == PDF_EXTENSION:
        return _pdf_text(path)
    return path.read_text(encoding="utf-8")


def _pdf_text(path: Path) -> str:
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        stripped = (page.extract_text() or "").strip()
        if stripped:
            parts.append(stripped)
    return "\n\n".join(parts)
