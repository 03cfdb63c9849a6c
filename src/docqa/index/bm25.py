"""BM25 keyword ranking over catalog chunks."""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Dict, List, Sequence, Tuple

from docqa.models import Chunk

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def tokenize(text: str) -> List[str]:
    """Lowercase, strip punctuation and drop tokens of two characters or less."""
    cleaned = _PUNCTUATION_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > 2]


class BM25Index:
    """Immutable BM25 statistics for one snapshot of the chunk set."""

    k1 = 1.5
    b = 0.75

    def __init__(self, chunks: Sequence[Chunk]) -> None:
        self.chunks = list(chunks)
        self._term_counts: List[Counter[str]] = []
        self._lengths: List[int] = []
        self.doc_frequencies: Dict[str, int] = {}

        for chunk in self.chunks:
            tokens = tokenize(chunk.content)
            counts = Counter(tokens)
            self._term_counts.append(counts)
            self._lengths.append(len(tokens))
            for term in counts:
                self.doc_frequencies[term] = self.doc_frequencies.get(term, 0) + 1

        self.avg_doc_length = sum(self._lengths) / len(self._lengths) if self._lengths else 0.0

    def __len__(self) -> int:
        return len(self.chunks)

    def idf(self, term: str) -> float:
        doc_freq = self.doc_frequencies.get(term, 0)
        total = len(self.chunks)
        return math.log((total - doc_freq + 0.5) / (doc_freq + 0.5) + 1)

    def score(self, position: int, query_tokens: Sequence[str]) -> float:
        """BM25 score of the chunk at ``position`` for already tokenized terms."""
        counts = self._term_counts[position]
        length_norm = self._lengths[position] / self.avg_doc_length if self.avg_doc_length else 0.0
        total = 0.0
        for term in query_tokens:
            term_freq = counts.get(term, 0)
            if term_freq == 0:
                continue
            numerator = term_freq * (self.k1 + 1)
            denominator = term_freq + self.k1 * (1 - self.b + self.b * length_norm)
            total += self.idf(term) * (numerator / denominator)
        return total

    def search(self, query: str, top_k: int = 10) -> List[Tuple[Chunk, float]]:
        """Return chunks with a positive score, best first."""
        query_tokens = tokenize(query)
        if not query_tokens or not self.chunks:
            return []

        scored = [
            (chunk, self.score(position, query_tokens))
            for position, chunk in enumerate(self.chunks)
        ]
        matches = [item for item in scored if item[1] > 0]
        matches.sort(key=lambda item: item[1], reverse=True)
        return matches[: max(top_k, 0)]
