"""SQLite snapshot persistence for the document catalog."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Protocol, Sequence

import numpy as np

from docqa.errors import SchemaMismatchError
from docqa.models import Chunk, Document

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1
EMBEDDING_DTYPE = "float32"


class DocumentPersistence(Protocol):
    """Full-snapshot persistence strategy used by the catalog."""

    def save_all(self, documents: Sequence[Document]) -> None: ...

    def load_all(self) -> List[Document]: ...


class SQLiteDocumentStore:
    """Persists the whole catalog as one snapshot per ``save_all`` call.

    Embeddings are stored as float32 blobs and timestamps as ISO-8601 text, so
    documents round-trip without precision loss. The schema version and the
    embedding dimension are recorded in a ``meta`` table and checked on load.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    document_title TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )
            conn.execute(
                "INSERT OR IGNORE INTO meta(key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )

    def _meta(self) -> Dict[str, str]:
        rows = self._conn.execute("SELECT key, value FROM meta").fetchall()
        return {row["key"]: row["value"] for row in rows}

    @property
    def schema_version(self) -> int:
        return int(self._meta().get("schema_version", "0"))

    @property
    def dimension(self) -> int | None:
        value = self._meta().get("dimension")
        return int(value) if value is not None else None

    def save_all(self, documents: Sequence[Document]) -> None:
        """Overwrite the stored snapshot with ``documents``."""
        dimensions = {chunk.dimension for doc in documents for chunk in doc.chunks}
        if len(dimensions) > 1:
            raise SchemaMismatchError(f"Mixed embedding dimensions: {sorted(dimensions)}")

        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM documents")
            for document in documents:
                conn.execute(
                    """
                    INSERT INTO documents(id, title, content, file_type, uploaded_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        document.id,
                        document.title,
                        document.content,
                        document.file_type,
                        document.uploaded_at.isoformat(),
                    ),
                )
                for chunk in document.chunks:
                    conn.execute(
                        """
                        INSERT INTO chunks(
                            id, document_id, document_title, chunk_index, content, embedding
                        )
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            chunk.id,
                            chunk.document_id,
                            chunk.document_title,
                            chunk.chunk_index,
                            chunk.content,
                            sqlite3.Binary(
                                np.asarray(chunk.embedding, dtype=EMBEDDING_DTYPE).tobytes()
                            ),
                        ),
                    )
            if dimensions:
                conn.execute(
                    "INSERT OR REPLACE INTO meta(key, value) VALUES ('dimension', ?)",
                    (str(dimensions.pop()),),
                )
            else:
                conn.execute("DELETE FROM meta WHERE key = 'dimension'")

        LOGGER.info("Saved %s documents to %s", len(documents), self.db_path)

    def load_all(self) -> List[Document]:
        """Read the stored snapshot, failing fast on any schema mismatch."""
        version = self.schema_version
        if version != SCHEMA_VERSION:
            raise SchemaMismatchError(
                f"Unsupported schema version {version} in {self.db_path} "
                f"(expected {SCHEMA_VERSION})"
            )
        dimension = self.dimension
        expected_bytes = dimension * np.dtype(EMBEDDING_DTYPE).itemsize if dimension else None

        chunks_by_document: Dict[str, List[Chunk]] = {}
        rows = self._conn.execute(
            """
            SELECT id, document_id, document_title, chunk_index, content, embedding
            FROM chunks
            ORDER BY document_id, chunk_index
            """
        ).fetchall()
        for row in rows:
            blob = bytes(row["embedding"])
            if expected_bytes is None or len(blob) != expected_bytes:
                raise SchemaMismatchError(
                    f"Chunk {row['id']} embedding has {len(blob)} bytes, "
                    f"expected {expected_bytes}"
                )
            chunks_by_document.setdefault(row["document_id"], []).append(
                Chunk(
                    id=row["id"],
                    document_id=row["document_id"],
                    document_title=row["document_title"],
                    content=row["content"],
                    embedding=np.frombuffer(blob, dtype=EMBEDDING_DTYPE).copy(),
                    chunk_index=row["chunk_index"],
                )
            )

        documents: List[Document] = []
        for row in self._conn.execute(
            "SELECT id, title, content, file_type, uploaded_at FROM documents ORDER BY rowid"
        ):
            try:
                uploaded_at = datetime.fromisoformat(row["uploaded_at"])
            except ValueError as exc:
                raise SchemaMismatchError(
                    f"Document {row['id']} has an invalid timestamp: {row['uploaded_at']!r}"
                ) from exc
            documents.append(
                Document(
                    id=row["id"],
                    title=row["title"],
                    content=row["content"],
                    file_type=row["file_type"],
                    uploaded_at=uploaded_at,
                    chunks=tuple(chunks_by_document.get(row["id"], ())),
                )
            )

        LOGGER.info("Loaded %s documents from %s", len(documents), self.db_path)
        return documents
