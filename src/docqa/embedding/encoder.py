"""Embedding providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Protocol, Sequence

import numpy as np
import openai
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from docqa.errors import EmbeddingServiceError

if TYPE_CHECKING:
    from docqa.config import AppConfig

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Turns text into fixed-length float vectors."""

    def embed(self, text: str) -> np.ndarray: ...

    def embed_batch(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray: ...


def _batches(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for local embeddings."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        try:
            self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
        except Exception as exc:
            raise EmbeddingServiceError(
                f"Failed to load embedding model {self.config.model_name}: {exc}"
            ) from exc
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded %s (dimension: %s)",
            self.config.model_name,
            self.dimension,
        )

    def embed_batch(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts, one row per text."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")
        try:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingServiceError(f"Failed to generate embeddings: {exc}") from exc
        return embeddings.astype("float32", copy=False)

    def embed(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-text embedding."""
        return self.embed_batch([text])[0]


class OpenAIEmbeddingModel:
    """Remote embeddings through the OpenAI embeddings endpoint.

    Inputs are sent in batches of ``batch_size``; any failed request fails the
    whole call so callers never see a partial result.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_OPENAI_MODEL,
        *,
        batch_size: int = 100,
        client: OpenAI | None = None,
    ) -> None:
        self.model_name = model_name
        self.batch_size = batch_size
        self._client = client or OpenAI()

    def _request(self, batch: Sequence[str]) -> list[list[float]]:
        try:
            response = self._client.embeddings.create(model=self.model_name, input=list(batch))
        except openai.OpenAIError as exc:
            logger.error("Embedding request failed: %s", exc)
            raise EmbeddingServiceError("Failed to generate embeddings") from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]

    def embed_batch(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        sentences = list(texts)
        vectors: list[list[float]] = []
        for batch in _batches(sentences, self.batch_size):
            vectors.extend(self._request(batch))
        if len(vectors) != len(sentences):
            raise EmbeddingServiceError(
                f"Expected {len(sentences)} embeddings, received {len(vectors)}"
            )
        return np.asarray(vectors, dtype="float32")

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


def build_embedder(config: AppConfig) -> EmbeddingProvider:
    """Create the embedding provider selected by ``config.embedding_provider``."""
    if config.embedding_provider == "openai":
        return OpenAIEmbeddingModel(config.openai_embedding_model)
    return EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
