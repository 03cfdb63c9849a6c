"""FastAPI application exposing ingestion, search and streaming chat."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Literal

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from docqa.config import AppConfig
from docqa.embedding.encoder import EmbeddingProvider, build_embedder
from docqa.errors import (
    EmbeddingServiceError,
    ExtractionError,
    GenerationServiceError,
    ValidationError,
)
from docqa.generation.generator import ChatGenerator, GenerationConfig, TextGenerator
from docqa.generation.prompt import build_metadata_preamble, build_system_prompt
from docqa.generation.session import SessionManager
from docqa.index.catalog import Catalog
from docqa.index.indexer import Indexer
from docqa.index.search import Searcher
from docqa.index.storage import SQLiteDocumentStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    """Composition root owning the catalog and everything built around it."""

    config: AppConfig
    catalog: Catalog
    embedder: EmbeddingProvider
    indexer: Indexer
    searcher: Searcher
    sessions: SessionManager

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        catalog: Catalog,
        embedder: EmbeddingProvider,
        generator: TextGenerator,
    ) -> "AppContext":
        return cls(
            config=config,
            catalog=catalog,
            embedder=embedder,
            indexer=Indexer(
                embedder,
                catalog,
                chunk_chars=config.chunk_chars,
                overlap=config.overlap,
                max_chunks=config.max_chunks,
                max_file_bytes=config.max_file_bytes,
            ),
            searcher=Searcher(embedder, catalog),
            sessions=SessionManager(generator),
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> "AppContext":
        resolved_db = config.resolve_db_path(Path.cwd())
        _ensure_db_parent(resolved_db)
        catalog = Catalog(SQLiteDocumentStore(resolved_db))
        catalog.initialize()
        return cls.build(
            config,
            catalog=catalog,
            embedder=build_embedder(config),
            generator=ChatGenerator(
                GenerationConfig(model=config.generation_model, temperature=config.temperature)
            ),
        )


class SearchPayload(BaseModel):
    query: str
    top_k: int = 3
    mode: Literal["hybrid", "keyword"] = "hybrid"


class ChatPayload(BaseModel):
    message: str
    request_id: str | None = None


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def get_context(request: Request) -> AppContext:
    """Return the app's context, building it once on first use.

    Runs in the threadpool, so concurrent first requests must not each build
    their own catalog.
    """
    state = request.app.state
    context = state.context
    if context is None:
        with state.context_lock:
            if state.context is None:
                state.context = AppContext.from_config(state.config)
            context = state.context
    return context


def create_app(context: AppContext | None = None, config: AppConfig | None = None) -> FastAPI:
    app = FastAPI(title="docqa", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.context = context
    app.state.context_lock = threading.Lock()
    app.state.config = context.config if context is not None else (config or AppConfig())

    @app.on_event("startup")
    async def startup_event() -> None:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    @app.post("/upload")
    async def upload_document(
        file: UploadFile = File(...), ctx: AppContext = Depends(get_context)
    ) -> dict[str, Any]:
        data = await file.read()
        filename = file.filename or "upload"
        try:
            result = await asyncio.to_thread(
                ctx.indexer.ingest_file, filename, data, file.content_type
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ExtractionError as exc:
            raise HTTPException(status_code=415, detail=str(exc)) from exc
        except EmbeddingServiceError as exc:
            LOGGER.error("Upload of %s failed: %s", filename, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        document = ctx.catalog.get(result.document_id)
        return {"success": True, "document": document.summary() if document else None}

    @app.get("/documents")
    async def list_documents(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
        documents = ctx.catalog.get_all()
        return {
            "documents": [document.summary() for document in documents],
            "stats": {
                "document_count": len(documents),
                "chunk_count": sum(len(document.chunks) for document in documents),
            },
        }

    @app.delete("/documents/{doc_id}")
    async def delete_document(doc_id: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
        deleted = await asyncio.to_thread(ctx.catalog.delete, doc_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")
        return {"status": "ok", "deleted_id": doc_id}

    @app.post("/search")
    async def search_documents(
        payload: SearchPayload, ctx: AppContext = Depends(get_context)
    ) -> dict[str, Any]:
        query = payload.query.strip()
        if not query:
            raise HTTPException(status_code=400, detail="Empty query")
        top_k = max(1, min(payload.top_k, 50))

        if payload.mode == "keyword":
            matches = await asyncio.to_thread(ctx.searcher.keyword_search, query, top_k=top_k)
            return {
                "results": [
                    {
                        "chunk_id": chunk.id,
                        "document_id": chunk.document_id,
                        "title": chunk.document_title,
                        "text": chunk.content,
                        "score": score,
                    }
                    for chunk, score in matches
                ]
            }

        try:
            outcome = await asyncio.to_thread(ctx.searcher.query, query, top_k=top_k)
        except EmbeddingServiceError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "has_documents": outcome.has_documents,
            "results": [result.to_dict() for result in outcome.results],
        }

    @app.post("/chat")
    async def chat(payload: ChatPayload, ctx: AppContext = Depends(get_context)) -> StreamingResponse:
        message = payload.message.strip()
        if not message:
            raise HTTPException(status_code=400, detail="Empty message")

        # Registered before retrieval so a cancel can arrive while embedding.
        session = ctx.sessions.start(payload.request_id)
        try:
            outcome = await asyncio.to_thread(ctx.searcher.query, message, top_k=ctx.config.top_k)
        except EmbeddingServiceError as exc:
            ctx.sessions.discard(session)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ValidationError as exc:
            ctx.sessions.discard(session)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception:
            ctx.sessions.discard(session)
            raise

        if session.cancelled:
            LOGGER.info("Request %s cancelled during retrieval", payload.request_id)
        tokens = ctx.sessions.stream(
            session,
            build_system_prompt(outcome.results),
            message,
            preamble=build_metadata_preamble(outcome.results),
        )

        async def body() -> AsyncIterator[bytes]:
            try:
                async for piece in tokens:
                    yield piece.encode("utf-8")
            except GenerationServiceError as exc:
                LOGGER.error("Generation failed for %s: %s", payload.request_id, exc)
                raise

        return StreamingResponse(
            body(),
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.delete("/chat/{request_id}")
    async def cancel_chat(request_id: str, ctx: AppContext = Depends(get_context)) -> dict[str, str]:
        if not ctx.sessions.cancel(request_id):
            raise HTTPException(status_code=404, detail="Request not found")
        return {"status": "cancelled", "request_id": request_id}

    return app


app = create_app()
