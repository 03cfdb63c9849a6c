"""Utility helpers for working with files."""

from __future__ import annotations

from pathlib import Path
from typing import Container, Iterable, Iterator


def iter_document_paths(inputs: Iterable[Path], suffixes: Container[str]) -> Iterator[Path]:
    """Yield files with a supported suffix, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_document_paths(
                sorted(child for child in item.rglob("*") if child.is_file()), suffixes
            )
        elif item.is_file() and item.suffix.lower() in suffixes:
            yield item
