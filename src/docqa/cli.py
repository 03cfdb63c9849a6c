"""Command line interface for docqa."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from docqa.config import AppConfig
from docqa.embedding.encoder import build_embedder
from docqa.errors import DocQAError
from docqa.generation.generator import ChatGenerator, GenerationConfig
from docqa.generation.prompt import build_system_prompt
from docqa.generation.session import SessionManager
from docqa.index.catalog import Catalog
from docqa.index.indexer import Indexer
from docqa.index.search import SearchResult, Searcher
from docqa.index.storage import SQLiteDocumentStore
from docqa.ingestion.loader import FILE_TYPES, load_file
from docqa.utils.files import iter_document_paths
from docqa.web.app import create_app

console = Console()
app = typer.Typer(help="docqa - hybrid retrieval for document question answering")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _config(db: Optional[Path], **overrides) -> AppConfig:
    return AppConfig(db_path=db if db is not None else AppConfig().db_path, **overrides)


def _open_catalog(config: AppConfig) -> tuple[SQLiteDocumentStore, Catalog]:
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)
    store = SQLiteDocumentStore(resolved_db)
    catalog = Catalog(store)
    catalog.initialize()
    return store, catalog


def _results_table(results: List[SearchResult]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Semantic")
    table.add_column("Keywords")
    table.add_column("Document")
    table.add_column("Why")
    table.add_column("Snippet")
    for result in results:
        table.add_row(
            f"{result.combined_score:.4f}",
            f"{result.vector_score:.2f}",
            f"{result.keyword_score:.2f}",
            result.chunk.document_title,
            result.explanation,
            result.chunk.content[:180],
        )
    return table


@app.command()
def ingest(
    inputs: List[Path] = typer.Argument(
        ..., help="Files or directories (PDF, TXT, Markdown) to ingest.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option("local", help="Embedding provider: local or openai"),
    chunk_chars: int = typer.Option(AppConfig().chunk_chars, help="Chunk size in characters"),
    overlap: int = typer.Option(AppConfig().overlap, help="Chunk overlap"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Ingest one or more documents into the catalog."""
    _setup_logging(verbose)
    config = _config(db, embedding_provider=provider, chunk_chars=chunk_chars, overlap=overlap)

    paths = list(iter_document_paths(inputs, FILE_TYPES))
    if not paths:
        console.print("[yellow]No supported files found.[/yellow]")
        return

    store, catalog = _open_catalog(config)
    indexer = Indexer(
        build_embedder(config),
        catalog,
        chunk_chars=config.chunk_chars,
        overlap=config.overlap,
        max_chunks=config.max_chunks,
        max_file_bytes=config.max_file_bytes,
    )

    ingested = failed = 0
    try:
        for path in paths:
            try:
                text, file_type = load_file(path)
                result = indexer.ingest(text, path.name, file_type)
            except DocQAError as exc:
                console.print(f"[red]Failed[/red] {path}: {exc}")
                failed += 1
                continue
            console.print(f"Ingested {path.name} as {result.document_id} ({result.chunk_count} chunks)")
            ingested += 1
    finally:
        store.close()

    console.print(f"Ingested: {ingested}, failed: {failed}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option("local", help="Embedding provider: local or openai"),
    mode: str = typer.Option("hybrid", help="hybrid or keyword"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search the catalog."""
    _setup_logging(verbose)
    config = _config(db, embedding_provider=provider)
    store, catalog = _open_catalog(config)
    try:
        if mode == "keyword":
            matches = catalog.lexical_search(query, top_k=top_k)
            if not matches:
                console.print("[yellow]No matches found.[/yellow]")
                return
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("BM25")
            table.add_column("Document")
            table.add_column("Chunk")
            table.add_column("Snippet")
            for chunk, score in matches:
                table.add_row(
                    f"{score:.4f}", chunk.document_title, str(chunk.chunk_index), chunk.content[:180]
                )
            console.print(table)
            return

        if catalog.chunk_count() == 0:
            console.print("[yellow]No documents ingested yet.[/yellow]")
            return
        outcome = Searcher(build_embedder(config), catalog).query(query, top_k=top_k)
        console.print(_results_table(outcome.results))
    finally:
        store.close()


async def _stream_answer(sessions: SessionManager, system_prompt: str, question: str) -> None:
    session = sessions.start(None)
    async for token in sessions.stream(session, system_prompt, question):
        console.print(token, end="", soft_wrap=True, highlight=False)
    console.print()


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to answer from the catalog"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option("local", help="Embedding provider: local or openai"),
    model: str = typer.Option(AppConfig().generation_model, help="Chat model"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question with retrieved context, streaming the reply."""
    _setup_logging(verbose)
    config = _config(db, embedding_provider=provider, generation_model=model)
    store, catalog = _open_catalog(config)
    try:
        outcome = Searcher(build_embedder(config), catalog).query(question, top_k=config.top_k)
    finally:
        store.close()

    if outcome.results:
        console.print(_results_table(outcome.results))
    elif not outcome.has_documents:
        console.print("[yellow]No documents ingested; answering without context.[/yellow]")

    sessions = SessionManager(
        ChatGenerator(GenerationConfig(model=config.generation_model, temperature=config.temperature))
    )
    try:
        asyncio.run(_stream_answer(sessions, build_system_prompt(outcome.results), question))
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


@app.command()
def documents(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List ingested documents."""
    store, catalog = _open_catalog(_config(db))
    try:
        docs = catalog.get_all()
    finally:
        store.close()

    if not docs:
        console.print("[yellow]No documents ingested yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Chunks")
    table.add_column("Uploaded")
    for doc in docs:
        table.add_row(
            doc.id, doc.title, doc.file_type, str(len(doc.chunks)), doc.uploaded_at.isoformat()
        )
    console.print(table)


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document ID to delete"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete a document and its chunks."""
    store, catalog = _open_catalog(_config(db))
    try:
        deleted = catalog.delete(document_id)
    finally:
        store.close()

    if not deleted:
        console.print(f"[yellow]Document {document_id} not found.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Deleted {document_id}.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    provider: str = typer.Option("local", help="Embedding provider: local or openai"),
) -> None:
    """Start the HTTP API."""
    config = _config(db, embedding_provider=provider)
    console.print(
        f"Starting API on http://{host}:{port} (database: {config.resolve_db_path(Path.cwd())})"
    )
    uvicorn.run(
        create_app(config=config),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
