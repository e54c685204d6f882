"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator

TEXT_SUFFIXES = (".md", ".markdown", ".txt")


def iter_text_paths(inputs: Iterable[Path], suffixes: Iterable[str] = TEXT_SUFFIXES) -> Iterator[Path]:
    """Yield text document paths from input paths, descending into directories."""
    allowed = {suffix.lower() for suffix in suffixes}
    for item in inputs:
        if item.is_dir():
            children = sorted(child for child in item.rglob("*") if child.is_file())
            yield from iter_text_paths(children, allowed)
        elif item.is_file() and item.suffix.lower() in allowed:
            yield item


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def compute_text_sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
