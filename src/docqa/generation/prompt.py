"""Generation context, citations and the metadata stream preamble."""

from __future__ import annotations

import json
from typing import List, Optional, Sequence, Tuple

from docqa.index.search import SearchResult

META_DELIMITER = "__META__"

GROUNDED_PROMPT = """You are a helpful AI assistant with access to the user's personal documents.

Your task is to answer the user's question based on the relevant excerpts from their documents provided below.

INSTRUCTIONS:
1. Use the context below to answer the question thoroughly
2. You can synthesize, summarize, and explain information from the context
3. If asked for key points or summaries, extract the most important information
4. Always cite your sources using [Source N] notation for specific claims
5. If the context seems incomplete or doesn't fully answer the question, do your best with what's available and note the limitation
6. Be helpful and informative - interpret the user's intent charitably

RELEVANT EXCERPTS FROM USER'S DOCUMENTS:
{context}

Use the above excerpts to answer the user's question. Cite sources for key points."""

GENERAL_PROMPT = """You are a helpful AI assistant in a personal knowledge management system.
The user hasn't uploaded any documents yet, so you're in general assistant mode.
Be helpful, concise, and encourage them to upload documents to unlock the full knowledge base features."""


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def build_context(results: Sequence[SearchResult]) -> str:
    return "\n\n---\n\n".join(
        f"[Source {idx}: {result.chunk.document_title} - Confidence: "
        f"{_percent(result.combined_score)}]\n{result.chunk.content}"
        for idx, result in enumerate(results, start=1)
    )


def build_system_prompt(results: Sequence[SearchResult]) -> str:
    if not results:
        return GENERAL_PROMPT
    return GROUNDED_PROMPT.format(context=build_context(results))


def build_citations(results: Sequence[SearchResult]) -> List[dict]:
    return [
        {
            "index": idx,
            "title": result.chunk.document_title,
            "chunkId": result.chunk.id,
            "confidence": result.combined_score,
            "vectorScore": result.vector_score,
            "keywordScore": result.keyword_score,
            "explanation": result.explanation,
        }
        for idx, result in enumerate(results, start=1)
    ]


def build_retrieval_info(results: Sequence[SearchResult]) -> str:
    """Human readable summary of why each source was retrieved."""
    if not results:
        return ""
    lines = ["", "Retrieval Analysis:", ""]
    for idx, result in enumerate(results, start=1):
        lines.append(f"Source {idx}: {result.chunk.document_title}")
        lines.append(
            f"  Semantic: {_percent(result.vector_score)} | "
            f"Keywords: {_percent(result.keyword_score)}"
        )
        lines.append(f"  {result.explanation}")
        lines.append("")
    return "\n".join(lines)


def build_metadata_preamble(results: Sequence[SearchResult]) -> Optional[str]:
    """Delimited metadata block sent ahead of generated text, or None."""
    if not results:
        return None
    metadata = {
        "type": "metadata",
        "citations": build_citations(results),
        "retrievalInfo": build_retrieval_info(results),
    }
    return f"{META_DELIMITER}{json.dumps(metadata)}{META_DELIMITER}\n\n"


def split_metadata(payload: str) -> Tuple[Optional[dict], str]:
    """Strip a leading metadata block from a response body.

    Returns ``(metadata, text)``; metadata is None when the body has no block.
    """
    if not payload.startswith(META_DELIMITER):
        return None, payload
    end = payload.find(META_DELIMITER, len(META_DELIMITER))
    if end == -1:
        return None, payload
    metadata = json.loads(payload[len(META_DELIMITER) : end])
    rest = payload[end + len(META_DELIMITER) :]
    if rest.startswith("\n\n"):
        rest = rest[2:]
    return metadata, rest
