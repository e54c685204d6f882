"""Common interface shared by every search engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Protocol, runtime_checkable

from skillfinder.models import SearchResult, Source


@runtime_checkable
class SearchEngine(Protocol):
    """Operations the CLI, web API and selector rely on."""

    def build_index(self, references_dir: Path) -> None:
        ...

    def search(
        self, query: str, *, top_k: int = 5, source: Source | str | None = None
    ) -> List[SearchResult]:
        ...

    def get_stats(self) -> Dict[str, Any]:
        ...

    def clear_index(self) -> None:
        ...

    def is_built(self) -> bool:
        ...
