"""Text helpers including sentence-aware chunking."""

from __future__ import annotations

import re
from typing import List

_WHITESPACE_RE = re.compile(r"\s+")

SENTENCE_TERMINATORS = (". ", "! ", "? ")
# Trailing window searched for a sentence terminator before a hard cut.
BOUNDARY_WINDOW = 200


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def _last_sentence_end(window: str) -> int:
    return max(window.rfind(terminator) for terminator in SENTENCE_TERMINATORS)


def chunk_text(text: str, *, max_chars: int = 1000, overlap: int = 200) -> List[str]:
    """Split text into overlapping chunks that prefer sentence boundaries.

    Offsets are computed on the whitespace-normalized text. Every chunk but
    the last is cut after the last ``". "``, ``"! "`` or ``"? "`` found in its
    trailing 200 characters, or at ``max_chars`` when there is none.
    Consecutive chunks share ``overlap`` characters unless that would stop
    the start offset from advancing.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    normalized = normalize_whitespace(text or "")
    if not normalized:
        return []
    if len(normalized) <= max_chars:
        return [normalized]

    chunks: List[str] = []
    length = len(normalized)
    start = 0
    while start < length:
        end = start + max_chars
        if end < length:
            search_start = max(start, end - BOUNDARY_WINDOW)
            boundary = _last_sentence_end(normalized[search_start:end])
            if boundary > 0:
                end = search_start + boundary + 2
        else:
            end = length

        piece = normalized[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= length:
            break

        next_start = end - overlap
        start = end if next_start <= start else next_start

    return chunks
