"""Core docqa data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import numpy as np


@dataclass(frozen=True, slots=True)
class Chunk:
    """Retrievable slice of a document paired with its embedding."""

    id: str
    document_id: str
    document_title: str
    content: str
    embedding: np.ndarray = field(repr=False, compare=False)
    chunk_index: int = 0

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])


@dataclass(frozen=True, slots=True)
class Document:
    """Ingested document. Immutable once created; removed only as a whole."""

    id: str
    title: str
    content: str
    file_type: str
    uploaded_at: datetime
    chunks: tuple[Chunk, ...] = ()

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "file_type": self.file_type,
            "uploaded_at": self.uploaded_at.isoformat(),
            "chunk_count": len(self.chunks),
            "content_length": len(self.content),
        }
