"""Document ingestion pipeline."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from docqa.embedding.encoder import EmbeddingProvider
from docqa.errors import EmbeddingServiceError, ValidationError
from docqa.index.catalog import Catalog
from docqa.ingestion.loader import classify, extract_text
from docqa.models import Chunk, Document
from docqa.utils.text import chunk_text

LOGGER = logging.getLogger(__name__)

MAX_CHUNKS = 1000
MAX_FILE_BYTES = 10 * 1024 * 1024


def new_document_id() -> str:
    return f"doc_{uuid.uuid4().hex}"


@dataclass(slots=True)
class IngestResult:
    document_id: str
    chunk_count: int
    title: str = ""
    file_type: str = ""
    content_length: int = 0


class Indexer:
    """Coordinates chunking, embedding and the catalog commit.

    A document is only added to the catalog after every step succeeded, so a
    failure never leaves it partially indexed.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        catalog: Catalog,
        *,
        chunk_chars: int = 1000,
        overlap: int = 200,
        max_chunks: int = MAX_CHUNKS,
        max_file_bytes: int = MAX_FILE_BYTES,
    ) -> None:
        self.embedder = embedder
        self.catalog = catalog
        self.chunk_chars = chunk_chars
        self.overlap = overlap
        self.max_chunks = max_chunks
        self.max_file_bytes = max_file_bytes

    def ingest(self, text: str, title: str, file_type: str) -> IngestResult:
        """Chunk, embed and store already extracted text."""
        if not text or not text.strip():
            raise ValidationError("File appears to be empty or could not be parsed")

        pieces = chunk_text(text, max_chars=self.chunk_chars, overlap=self.overlap)
        LOGGER.info("Created %s chunks for %s", len(pieces), title)
        if len(pieces) > self.max_chunks:
            raise ValidationError(
                f"File too large: generated {len(pieces)} chunks (max {self.max_chunks}). "
                "Please upload a smaller file."
            )

        embeddings = self.embedder.embed_batch(pieces)
        if len(embeddings) != len(pieces):
            raise EmbeddingServiceError(
                f"Expected {len(pieces)} embeddings, received {len(embeddings)}"
            )

        document_id = new_document_id()
        chunks = tuple(
            Chunk(
                id=f"{document_id}_chunk_{index}",
                document_id=document_id,
                document_title=title,
                content=piece,
                embedding=embeddings[index],
                chunk_index=index,
            )
            for index, piece in enumerate(pieces)
        )
        document = Document(
            id=document_id,
            title=title,
            content=text,
            file_type=file_type,
            uploaded_at=datetime.now(timezone.utc),
            chunks=chunks,
        )
        self.catalog.add(document)

        return IngestResult(
            document_id=document_id,
            chunk_count=len(chunks),
            title=title,
            file_type=file_type,
            content_length=len(text),
        )

    def ingest_file(
        self, filename: str, data: bytes, content_type: str | None = None
    ) -> IngestResult:
        """Validate, extract and ingest an uploaded file."""
        if len(data) > self.max_file_bytes:
            limit_mb = self.max_file_bytes // (1024 * 1024)
            raise ValidationError(f"File too large. Maximum size is {limit_mb}MB.")

        LOGGER.info("Processing file: %s (%s bytes)", filename, len(data))
        text = extract_text(filename, data, content_type)
        return self.ingest(text, filename, classify(filename, content_type))
