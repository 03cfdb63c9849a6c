"""File text extraction.

Uses PyMuPDF (fitz) for PDF text extraction; plain text and Markdown are
decoded as UTF-8.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from docqa.errors import ExtractionError

LOGGER = logging.getLogger(__name__)

FILE_TYPES = {
    ".pdf": "PDF",
    ".txt": "TXT",
    ".md": "Markdown",
}
CONTENT_TYPES = {
    "application/pdf": "PDF",
    "text/plain": "TXT",
    "text/markdown": "Markdown",
}


def classify(filename: str, content_type: str | None = None) -> str:
    """Return the file type label for a file name (or MIME type)."""
    if content_type in CONTENT_TYPES:
        return CONTENT_TYPES[content_type]
    return FILE_TYPES.get(Path(filename).suffix.lower(), "Unknown")


def iter_pdf_pages(data: bytes) -> Iterator[str]:
    """Yield the text of each page of an in-memory PDF."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ExtractionError("Failed to parse PDF file") from exc

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:
                LOGGER.warning("Failed to read page %s: %s", index, exc)
                continue
            if text.strip():
                yield text
    finally:
        doc.close()


def extract_text(filename: str, data: bytes, content_type: str | None = None) -> str:
    """Extract the text of an uploaded file.

    Raises ExtractionError for unsupported types or unreadable content.
    """
    file_type = classify(filename, content_type)
    if file_type == "PDF":
        return "\n".join(iter_pdf_pages(data))
    if file_type in ("TXT", "Markdown"):
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ExtractionError(f"Failed to parse text file {filename}") from exc
    raise ExtractionError(f"Unsupported file type: {content_type or filename}")


def load_file(path: Path) -> tuple[str, str]:
    """Read a file from disk and return ``(text, file_type)``."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ExtractionError(f"Failed to read {path}: {exc}") from exc
    return extract_text(path.name, data), classify(path.name)
