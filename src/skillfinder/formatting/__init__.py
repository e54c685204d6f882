"""Search result formatters."""

from __future__ import annotations

from typing import List, Protocol, Sequence

from skillfinder.formatting.listing import ListFormatter
from skillfinder.formatting.tiered import FormattedResult, TieredFormatter
from skillfinder.models import SearchResult


class SearchFormatter(Protocol):
    name: str
    description: str

    def format(self, results: Sequence[SearchResult]) -> List[FormattedResult]:
        ...


def create_formatter(kind: str) -> SearchFormatter:
    if kind == "enhanced":
        return TieredFormatter()
    if kind == "list":
        return ListFormatter()
    raise ValueError(f"Unknown formatter type: {kind}")


__all__ = ["FormattedResult", "ListFormatter", "SearchFormatter", "TieredFormatter", "create_formatter"]
