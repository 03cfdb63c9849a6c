"""Tests for CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from rich.table import Table
from typer.testing import CliRunner

from conftest import FakeEmbedder, FakeGenerator
from docqa.cli import _ensure_db_parent, _setup_logging, app
from docqa.index.catalog import Catalog
from docqa.index.storage import SQLiteDocumentStore


runner = CliRunner()


@pytest.fixture
def fake_build_embedder():
    with patch("docqa.cli.build_embedder", return_value=FakeEmbedder()) as mock_build:
        yield mock_build


def _ingest(tmp_path: Path, db_path: Path, name: str, text: str) -> None:
    doc = tmp_path / name
    doc.write_text(text, encoding="utf-8")
    result = runner.invoke(app, ["ingest", str(doc), "--db", str(db_path)])
    assert result.exit_code == 0, result.output


def _document_ids(db_path: Path) -> list[str]:
    store = SQLiteDocumentStore(db_path)
    try:
        return [doc.id for doc in Catalog(store).get_all()]
    finally:
        store.close()


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("docqa.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("docqa.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestEnsureDbParent:
    """Tests for _ensure_db_parent helper."""

    def test_ensure_db_parent_creates_directory(self, tmp_path: Path) -> None:
        """Creates parent directory if it doesn't exist."""
        db_path = tmp_path / "subdir" / "test.db"
        assert not db_path.parent.exists()
        _ensure_db_parent(db_path)
        assert db_path.parent.exists()


class TestIngestCommand:
    """Tests for the ingest command."""

    def test_no_supported_files(self, tmp_path: Path) -> None:
        """Shows a warning when nothing can be ingested."""
        empty_dir = tmp_path / "empty"
        empty_dir.mkdir()
        (empty_dir / "image.png").write_bytes(b"\x89PNG")

        result = runner.invoke(app, ["ingest", str(empty_dir), "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "No supported files found" in result.output

    def test_ingest_directory(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        docs = tmp_path / "docs"
        docs.mkdir()
        (docs / "notes.txt").write_text("Turbine blades were inspected.", encoding="utf-8")
        (docs / "guide.md").write_text("# Guide\n\nReplace the filter monthly.", encoding="utf-8")
        db_path = tmp_path / "data" / "docqa.db"

        result = runner.invoke(app, ["ingest", str(docs), "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Ingested: 2, failed: 0" in result.output
        assert len(_document_ids(db_path)) == 2

    def test_failed_file_reported(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        empty = tmp_path / "empty.txt"
        empty.write_text("   ", encoding="utf-8")
        good = tmp_path / "good.txt"
        good.write_text("Useful content here.", encoding="utf-8")

        result = runner.invoke(
            app, ["ingest", str(empty), str(good), "--db", str(tmp_path / "t.db")]
        )

        assert result.exit_code == 0
        assert "Failed" in result.output
        assert "Ingested: 1, failed: 1" in result.output


class TestSearchCommand:
    """Tests for the search command."""

    def test_hybrid_empty_catalog(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        result = runner.invoke(app, ["search", "anything", "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "No documents ingested yet" in result.output
        fake_build_embedder.assert_not_called()

    def test_keyword_no_matches(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        db_path = tmp_path / "t.db"
        _ingest(tmp_path, db_path, "notes.txt", "Turbine blades were inspected.")

        result = runner.invoke(
            app, ["search", "lemon", "--mode", "keyword", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert "No matches found" in result.output

    def test_keyword_match(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        db_path = tmp_path / "t.db"
        _ingest(tmp_path, db_path, "notes.txt", "Turbine blades were inspected.")

        result = runner.invoke(
            app, ["search", "turbine", "--mode", "keyword", "--db", str(db_path)]
        )

        assert result.exit_code == 0
        assert "BM25" in result.output

    def test_hybrid_results(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        db_path = tmp_path / "t.db"
        _ingest(tmp_path, db_path, "notes.txt", "Turbine blades were inspected.")

        result = runner.invoke(app, ["search", "turbine blades", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Score" in result.output


class TestAskCommand:
    """Tests for the ask command."""

    def test_streams_answer(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        db_path = tmp_path / "t.db"
        _ingest(tmp_path, db_path, "notes.txt", "Turbine blades were inspected.")
        generator = FakeGenerator()

        with patch("docqa.cli.ChatGenerator", return_value=generator):
            result = runner.invoke(app, ["ask", "What was inspected?", "--db", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Hello" in result.output
        assert "world" in result.output
        system_prompt, question = generator.prompts[0]
        assert "[Source 1: notes.txt" in system_prompt
        assert question == "What was inspected?"

    def test_without_documents(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        with patch("docqa.cli.ChatGenerator", return_value=FakeGenerator()):
            result = runner.invoke(app, ["ask", "Hello?", "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "answering without context" in result.output

    def test_generation_failure(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        with patch("docqa.cli.ChatGenerator", return_value=FakeGenerator(fail_at=0)):
            result = runner.invoke(app, ["ask", "Hello?", "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 1
        assert "provider exploded" in result.output


class TestDocumentsAndDelete:
    """Tests for the documents and delete commands."""

    def test_documents_empty(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["documents", "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 0
        assert "No documents ingested yet" in result.output

    def test_documents_lists(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        db_path = tmp_path / "t.db"
        _ingest(tmp_path, db_path, "notes.txt", "Turbine blades were inspected.")

        with patch("docqa.cli.console") as mock_console:
            result = runner.invoke(app, ["documents", "--db", str(db_path)])

        assert result.exit_code == 0
        table = mock_console.print.call_args[0][0]
        assert isinstance(table, Table)
        assert table.row_count == 1

    def test_delete(self, tmp_path: Path, fake_build_embedder: MagicMock) -> None:
        db_path = tmp_path / "t.db"
        _ingest(tmp_path, db_path, "notes.txt", "Turbine blades were inspected.")
        [doc_id] = _document_ids(db_path)

        result = runner.invoke(app, ["delete", doc_id, "--db", str(db_path)])

        assert result.exit_code == 0
        assert f"Deleted {doc_id}" in result.output
        assert _document_ids(db_path) == []

    def test_delete_not_found(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["delete", "doc_missing", "--db", str(tmp_path / "t.db")])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestWebCommand:
    """Tests for the web command."""

    @patch("docqa.cli.uvicorn.run")
    def test_web_starts_server(self, mock_run: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(
            app, ["web", "--port", "9000", "--db", str(tmp_path / "t.db")]
        )

        assert result.exit_code == 0
        mock_run.assert_called_once()
        assert mock_run.call_args[1]["port"] == 9000
