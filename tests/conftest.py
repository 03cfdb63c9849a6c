import asyncio
import zlib
from datetime import datetime, timezone

import numpy as np
import pytest

from docqa.generation.generator import race_cancel
from docqa.index.bm25 import tokenize
from docqa.models import Chunk, Document

DIMENSION = 8


class FakeEmbedder:
    """Deterministic bag-of-words embedder that records its calls."""

    dimension = DIMENSION

    def __init__(self):
        self.calls = []
        self.batch_calls = []

    @staticmethod
    def vector(text):
        vector = np.zeros(DIMENSION, dtype="float32")
        for token in tokenize(text):
            vector[zlib.crc32(token.encode("utf-8")) % DIMENSION] += 1.0
        return vector

    def embed(self, text):
        self.calls.append(text)
        return self.vector(text)

    def embed_batch(self, texts):
        texts = list(texts)
        self.batch_calls.append(texts)
        if not texts:
            return np.zeros((0, DIMENSION), dtype="float32")
        return np.vstack([self.vector(text) for text in texts])


class FakeGenerator:
    """Yields fixed tokens; can fail or block (until cancelled) at an index."""

    def __init__(self, tokens=("Hello", " ", "world"), *, fail_at=None, block_at=None, error=None):
        self.tokens = list(tokens)
        self.fail_at = fail_at
        self.block_at = block_at
        self.error = error or RuntimeError("provider exploded")
        self.prompts = []
        self.closed = False

    async def stream(self, system_prompt, user_message, *, cancel_event):
        self.prompts.append((system_prompt, user_message))
        try:
            for index, token in enumerate(self.tokens):
                if index == self.fail_at:
                    raise self.error
                if index == self.block_at:
                    await race_cancel(asyncio.Event().wait(), cancel_event)
                await asyncio.sleep(0)
                yield token
        finally:
            self.closed = True


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def make_chunk():
    def _make(content, *, embedding=None, document_id="doc_test", index=0, title="Test Document"):
        if embedding is None:
            embedding = FakeEmbedder.vector(content)
        return Chunk(
            id=f"{document_id}_chunk_{index}",
            document_id=document_id,
            document_title=title,
            content=content,
            embedding=np.asarray(embedding, dtype="float32"),
            chunk_index=index,
        )

    return _make


@pytest.fixture
def make_document(make_chunk):
    def _make(document_id, texts, *, title=None, embeddings=None):
        title = title or f"{document_id}.txt"
        chunks = tuple(
            make_chunk(
                text,
                embedding=None if embeddings is None else embeddings[index],
                document_id=document_id,
                index=index,
                title=title,
            )
            for index, text in enumerate(texts)
        )
        return Document(
            id=document_id,
            title=title,
            content=" ".join(texts),
            file_type="TXT",
            uploaded_at=datetime(2025, 12, 21, 10, 30, 15, 123456, tzinfo=timezone.utc),
            chunks=chunks,
        )

    return _make
