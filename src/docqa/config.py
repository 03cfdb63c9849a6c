"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from docqa.embedding.encoder import DEFAULT_MODEL, DEFAULT_OPENAI_MODEL

DEFAULT_GENERATION_MODEL = "gpt-4o-mini"


def _get_default_db_path() -> Path:
    """Prefer a local data/ directory when running from a checkout."""
    local_db = Path("data/docqa.db")
    if local_db.exists():
        return local_db
    return Path.home() / ".docqa" / "docqa.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    embedding_provider: Literal["local", "openai"] = "local"
    model_name: str = DEFAULT_MODEL
    openai_embedding_model: str = DEFAULT_OPENAI_MODEL
    generation_model: str = DEFAULT_GENERATION_MODEL
    temperature: float = 0.7
    chunk_chars: int = 1000
    overlap: int = 200
    max_chunks: int = 1000
    max_file_bytes: int = 10 * 1024 * 1024
    top_k: int = 3

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
