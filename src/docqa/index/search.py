"""Hybrid (semantic + keyword) search interface."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Sequence

import numpy as np

from docqa.index.bm25 import tokenize
from docqa.index.similarity import cosine_similarity
from docqa.models import Chunk

if TYPE_CHECKING:
    from docqa.embedding.encoder import EmbeddingProvider
    from docqa.index.catalog import Catalog

LOGGER = logging.getLogger(__name__)

VECTOR_WEIGHT = 0.6
KEYWORD_WEIGHT = 0.4
MIN_TERM_LENGTH = 3


@dataclass(slots=True)
class SearchResult:
    chunk: Chunk
    combined_score: float
    vector_score: float
    keyword_score: float
    explanation: str

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk.id,
            "document_id": self.chunk.document_id,
            "title": self.chunk.document_title,
            "chunk_index": self.chunk.chunk_index,
            "text": self.chunk.content,
            "combined_score": self.combined_score,
            "vector_score": self.vector_score,
            "keyword_score": self.keyword_score,
            "explanation": self.explanation,
        }


@dataclass(slots=True)
class QueryResult:
    results: List[SearchResult] = field(default_factory=list)
    has_documents: bool = False


def _query_terms(query: str) -> List[str]:
    return [term for term in tokenize(query) if len(term) >= MIN_TERM_LENGTH]


def keyword_score(query: str, text: str) -> float:
    """Lightweight keyword overlap score in [0, 1].

    Deliberately independent from BM25: log-damped substring counts averaged
    over the query, blended half and half with query term coverage.
    """
    terms = tokenize(query)
    if not terms:
        return 0.0

    text_lower = text.lower()
    accumulated = 0.0
    matched = 0
    for term in terms:
        if len(term) < MIN_TERM_LENGTH:
            continue
        occurrences = text_lower.count(term)
        if occurrences > 0:
            matched += 1
            accumulated += math.log(1 + occurrences)

    coverage = matched / len(terms)
    score = (accumulated / max(1, len(terms))) * 0.5 + coverage * 0.5
    return max(0.0, min(1.0, score))


def explain_match(vector_score: float, keyword_score: float, query: str, text: str) -> str:
    """Human readable reason for a match, derived from score thresholds."""
    reasons: List[str] = []

    if vector_score > 0.8:
        reasons.append("Very high semantic match")
    elif vector_score > 0.6:
        reasons.append("Good semantic relevance")
    elif vector_score > 0.4:
        reasons.append("Moderate semantic relevance")

    if keyword_score > 0.5:
        text_lower = text.lower()
        matched = [term for term in _query_terms(query) if term in text_lower]
        if matched:
            reasons.append("Contains: " + ", ".join(f'"{term}"' for term in matched[:2]))

    return "; ".join(reasons) if reasons else "Related content"


def rank_hybrid(
    query: str,
    query_embedding: Sequence[float] | np.ndarray,
    chunks: Sequence[Chunk],
    *,
    top_k: int = 3,
) -> List[SearchResult]:
    """Score every chunk and return the exact top ``top_k`` by combined score."""
    if not chunks:
        return []

    query_vector = np.asarray(query_embedding, dtype=np.float32)
    results: List[SearchResult] = []
    for chunk in chunks:
        vector = cosine_similarity(query_vector, chunk.embedding)
        keyword = keyword_score(query, chunk.content)
        results.append(
            SearchResult(
                chunk=chunk,
                combined_score=VECTOR_WEIGHT * vector + KEYWORD_WEIGHT * keyword,
                vector_score=vector,
                keyword_score=keyword,
                explanation=explain_match(vector, keyword, query, chunk.content),
            )
        )

    results.sort(key=lambda result: result.combined_score, reverse=True)
    return results[: max(top_k, 0)]


class Searcher:
    """High-level API to query the catalog."""

    def __init__(self, embedder: EmbeddingProvider, catalog: Catalog) -> None:
        self.embedder = embedder
        self.catalog = catalog

    def query(
        self,
        message: str,
        query_embedding: Sequence[float] | np.ndarray | None = None,
        *,
        top_k: int = 3,
    ) -> QueryResult:
        """Retrieve the chunks most relevant to ``message``.

        The embedder is only called when the catalog holds chunks and no
        embedding was supplied.
        """
        chunk_count = self.catalog.chunk_count()
        LOGGER.info(
            "Catalog status: %s documents, %s chunks", self.catalog.count(), chunk_count
        )
        if chunk_count == 0:
            return QueryResult(results=[], has_documents=False)

        if query_embedding is None:
            query_embedding = self.embedder.embed(message)
        results = self.catalog.hybrid_search(message, query_embedding, top_k=top_k)
        LOGGER.info("Found %s relevant chunks", len(results))
        return QueryResult(results=results, has_documents=True)

    def keyword_search(self, query: str, *, top_k: int = 10) -> List[tuple[Chunk, float]]:
        return self.catalog.lexical_search(query, top_k=top_k)
