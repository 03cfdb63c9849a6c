"""Tests for the in-memory document catalog."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from docqa.errors import DimensionMismatchError
from docqa.index.catalog import Catalog
from docqa.index.storage import SQLiteDocumentStore


class TestInitialize:
    """Tests for catalog initialization."""

    def test_loads_persisted_documents_once(self, make_document) -> None:
        persistence = MagicMock()
        persistence.load_all.return_value = [make_document("doc_a", ["alpha text"])]
        catalog = Catalog(persistence)

        assert catalog.initialize() == 1
        assert catalog.initialize() == 0
        assert catalog.count() == 1
        persistence.load_all.assert_called_once()

    def test_lazy_initialization(self, make_document) -> None:
        """Public operations initialize on first use."""
        persistence = MagicMock()
        persistence.load_all.return_value = [make_document("doc_a", ["one", "two"])]
        catalog = Catalog(persistence)

        assert not catalog.initialized
        assert catalog.chunk_count() == 2
        assert catalog.initialized

    def test_without_persistence(self) -> None:
        catalog = Catalog()
        assert catalog.initialize() == 0
        assert catalog.get_all() == []

    def test_load_error_propagates(self) -> None:
        persistence = MagicMock()
        persistence.load_all.side_effect = RuntimeError("corrupt")
        catalog = Catalog(persistence)

        with pytest.raises(RuntimeError):
            catalog.initialize()
        assert not catalog.initialized

    def test_records_dimension(self, make_document) -> None:
        persistence = MagicMock()
        persistence.load_all.return_value = [make_document("doc_a", ["some text"])]
        catalog = Catalog(persistence)
        catalog.initialize()

        assert catalog.dimension == 8


class TestMutations:
    """Tests for add, delete and clear."""

    def test_add_persists_full_snapshot(self, make_document) -> None:
        persistence = MagicMock()
        persistence.load_all.return_value = []
        catalog = Catalog(persistence)
        first = make_document("doc_a", ["alpha"])
        second = make_document("doc_b", ["beta", "gamma"])

        catalog.add(first)
        catalog.add(second)

        assert persistence.save_all.call_count == 2
        saved = persistence.save_all.call_args[0][0]
        assert [doc.id for doc in saved] == ["doc_a", "doc_b"]
        assert catalog.count() == 2
        assert catalog.chunk_count() == 3

    def test_add_replaces_same_id(self, make_document) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["one"]))
        catalog.add(make_document("doc_a", ["one", "two"]))

        assert catalog.count() == 1
        assert catalog.chunk_count() == 2

    def test_get(self, make_document) -> None:
        catalog = Catalog()
        document = make_document("doc_a", ["alpha"])
        catalog.add(document)

        assert catalog.get("doc_a") is document
        assert catalog.get("missing") is None

    def test_delete_removes_chunks(self, make_document) -> None:
        persistence = MagicMock()
        persistence.load_all.return_value = []
        catalog = Catalog(persistence)
        catalog.add(make_document("doc_a", ["alpha", "beta"]))
        catalog.add(make_document("doc_b", ["gamma"]))

        assert catalog.delete("doc_a") is True
        assert catalog.count() == 1
        assert all(chunk.document_id == "doc_b" for chunk in catalog.get_all_chunks())
        assert persistence.save_all.call_count == 3

    def test_delete_unknown_id(self) -> None:
        persistence = MagicMock()
        persistence.load_all.return_value = []
        catalog = Catalog(persistence)

        assert catalog.delete("missing") is False
        persistence.save_all.assert_not_called()

    def test_clear(self, make_document) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["alpha"]))
        catalog.clear()

        assert catalog.count() == 0
        assert catalog.chunk_count() == 0

    def test_save_failure_is_not_fatal(self, make_document, caplog) -> None:
        """A failed save is logged and the in-memory state is kept."""
        persistence = MagicMock()
        persistence.load_all.return_value = []
        persistence.save_all.side_effect = OSError("disk full")
        catalog = Catalog(persistence)

        with caplog.at_level(logging.ERROR, logger="docqa.index.catalog"):
            catalog.add(make_document("doc_a", ["alpha"]))

        assert catalog.count() == 1
        assert "Failed to save documents" in caplog.text

    def test_dimension_mismatch_rejected(self, make_document) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["alpha"]))
        bad = make_document("doc_b", ["beta"], embeddings=[[1.0, 0.0, 0.0]])

        with pytest.raises(DimensionMismatchError):
            catalog.add(bad)
        assert catalog.count() == 1
        assert catalog.dimension == 8

    def test_mixed_dimensions_within_document(self, make_document) -> None:
        catalog = Catalog()
        bad = make_document("doc_a", ["one", "two"], embeddings=[[1.0, 0.0], [1.0, 0.0, 0.0]])

        with pytest.raises(DimensionMismatchError):
            catalog.add(bad)
        assert catalog.count() == 0
        assert catalog.dimension is None

    def test_generation_increments(self, make_document) -> None:
        catalog = Catalog()
        catalog.initialize()
        before = catalog.generation
        catalog.add(make_document("doc_a", ["alpha"]))
        catalog.delete("doc_a")

        assert catalog.generation == before + 2


class TestSnapshots:
    """Readers keep the snapshot they obtained."""

    def test_chunk_list_is_a_copy(self, make_document) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["alpha"]))
        chunks = catalog.get_all_chunks()

        catalog.add(make_document("doc_b", ["beta"]))

        assert len(chunks) == 1
        assert catalog.chunk_count() == 2


class TestSearch:
    """Tests for hybrid and lexical search through the catalog."""

    def test_hybrid_search_empty(self, fake_embedder) -> None:
        catalog = Catalog()
        assert catalog.hybrid_search("query", fake_embedder.embed("query")) == []

    def test_hybrid_search_ranks(self, make_document, fake_embedder) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["solar panels convert sunlight"]))
        catalog.add(make_document("doc_b", ["medieval castle architecture"]))

        query = "solar panels sunlight"
        results = catalog.hybrid_search(query, fake_embedder.embed(query), top_k=1)

        assert len(results) == 1
        assert results[0].chunk.document_id == "doc_a"

    def test_lexical_index_cached_until_mutation(self, make_document) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["alpha"]))

        first = catalog.lexical_index()
        assert catalog.lexical_index() is first

        catalog.add(make_document("doc_b", ["beta"]))
        rebuilt = catalog.lexical_index()
        assert rebuilt is not first
        assert len(rebuilt) == 2

    def test_lexical_search_after_delete(self, make_document) -> None:
        catalog = Catalog()
        catalog.add(make_document("doc_a", ["turbine maintenance schedule"]))
        catalog.add(make_document("doc_b", ["turbine blade inspection"]))

        assert len(catalog.lexical_search("turbine")) == 2
        catalog.delete("doc_a")
        matches = catalog.lexical_search("turbine")

        assert [chunk.document_id for chunk, _ in matches] == ["doc_b"]


class TestPersistenceRoundTrip:
    """Catalog backed by the SQLite store."""

    def test_reload_from_disk(self, tmp_path: Path, make_document) -> None:
        db_path = tmp_path / "catalog.db"
        store = SQLiteDocumentStore(db_path)
        catalog = Catalog(store)
        catalog.add(make_document("doc_a", ["alpha beta", "gamma delta"]))
        catalog.add(make_document("doc_b", ["epsilon"]))
        catalog.delete("doc_b")
        store.close()

        reopened = SQLiteDocumentStore(db_path)
        restored = Catalog(reopened)
        try:
            assert restored.initialize() == 1
            document = restored.get("doc_a")
            assert document is not None
            assert [chunk.content for chunk in document.chunks] == ["alpha beta", "gamma delta"]
        finally:
            reopened.close()
