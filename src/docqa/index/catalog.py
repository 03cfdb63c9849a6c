"""In-memory document catalog with snapshot persistence."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from docqa.errors import DimensionMismatchError
from docqa.index.bm25 import BM25Index
from docqa.index.search import SearchResult, rank_hybrid
from docqa.index.storage import DocumentPersistence
from docqa.models import Chunk, Document

LOGGER = logging.getLogger(__name__)


class Catalog:
    """Owns the documents and chunks that queries are answered from.

    Mutations are serialized by a lock and swap in a fresh mapping, so readers
    always see a whole snapshot without locking. Every mutation is followed by
    a full ``save_all`` on the persistence collaborator; a failed save is
    logged and the in-memory state stays authoritative.
    """

    def __init__(
        self,
        persistence: Optional[DocumentPersistence] = None,
        *,
        dimension: int | None = None,
    ) -> None:
        self.persistence = persistence
        self._dimension = dimension
        self._documents: Dict[str, Document] = {}
        self._chunks: Tuple[Chunk, ...] = ()
        self._generation = 0
        self._lexical: Optional[Tuple[int, BM25Index]] = None
        self._lock = threading.RLock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def dimension(self) -> int | None:
        return self._dimension

    @property
    def generation(self) -> int:
        return self._generation

    def initialize(self) -> int:
        """Load persisted documents once. Returns how many were loaded."""
        with self._lock:
            if self._initialized:
                return 0
            documents = self.persistence.load_all() if self.persistence is not None else []
            loaded: Dict[str, Document] = {}
            for document in documents:
                self._check_dimensions(document)
                loaded[document.id] = document
            self._swap(loaded)
            self._initialized = True
        if documents:
            LOGGER.info("Loaded %s documents into the catalog", len(documents))
        return len(documents)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def _check_dimensions(self, document: Document) -> None:
        expected = self._dimension
        for chunk in document.chunks:
            if expected is None:
                expected = chunk.dimension
            elif chunk.dimension != expected:
                raise DimensionMismatchError(expected, chunk.dimension)
        self._dimension = expected

    def _swap(self, documents: Dict[str, Document]) -> None:
        chunks = tuple(chunk for doc in documents.values() for chunk in doc.chunks)
        self._documents = documents
        self._chunks = chunks
        self._generation += 1

    def _persist(self) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save_all(list(self._documents.values()))
        except Exception:
            LOGGER.exception("Failed to save documents; keeping in-memory state")

    def add(self, document: Document) -> None:
        self._ensure_initialized()
        with self._lock:
            self._check_dimensions(document)
            documents = dict(self._documents)
            documents[document.id] = document
            self._swap(documents)
            self._persist()
        LOGGER.info("Added document %s (%s chunks)", document.id, len(document.chunks))

    def delete(self, document_id: str) -> bool:
        self._ensure_initialized()
        with self._lock:
            if document_id not in self._documents:
                return False
            documents = dict(self._documents)
            del documents[document_id]
            self._swap(documents)
            self._persist()
        LOGGER.info("Deleted document %s", document_id)
        return True

    def clear(self) -> None:
        self._ensure_initialized()
        with self._lock:
            self._swap({})
            self._persist()

    def get(self, document_id: str) -> Optional[Document]:
        self._ensure_initialized()
        return self._documents.get(document_id)

    def get_all(self) -> List[Document]:
        self._ensure_initialized()
        return list(self._documents.values())

    def get_all_chunks(self) -> List[Chunk]:
        self._ensure_initialized()
        return list(self._chunks)

    def count(self) -> int:
        self._ensure_initialized()
        return len(self._documents)

    def chunk_count(self) -> int:
        self._ensure_initialized()
        return len(self._chunks)

    def hybrid_search(
        self,
        query: str,
        query_embedding: Sequence[float] | np.ndarray,
        top_k: int = 3,
    ) -> List[SearchResult]:
        """Rank every chunk by blended semantic and keyword score."""
        self._ensure_initialized()
        return rank_hybrid(query, query_embedding, self._chunks, top_k=top_k)

    def lexical_index(self) -> BM25Index:
        """BM25 statistics for the current snapshot, rebuilt after mutations."""
        self._ensure_initialized()
        cached = self._lexical
        if cached is not None and cached[0] == self._generation:
            return cached[1]
        with self._lock:
            generation = self._generation
            if self._lexical is None or self._lexical[0] != generation:
                LOGGER.debug("Rebuilding BM25 index over %s chunks", len(self._chunks))
                self._lexical = (generation, BM25Index(self._chunks))
            return self._lexical[1]

    def lexical_search(self, query: str, top_k: int = 10) -> List[Tuple[Chunk, float]]:
        return self.lexical_index().search(query, top_k=top_k)
