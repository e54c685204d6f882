"""Flat list formatter with a short preview per result."""

from __future__ import annotations

from typing import List, Sequence

from skillfinder.formatting.tiered import FormattedResult
from skillfinder.models import DisplayTier, SearchResult
from skillfinder.utils.text import one_line_preview


class ListFormatter:
    name = "list"
    description = "Simple list format with basic preview"

    def __init__(self, max_preview_chars: int = 200) -> None:
        self.max_preview_chars = max_preview_chars

    def format(self, results: Sequence[SearchResult]) -> List[FormattedResult]:
        return [
            FormattedResult(
                result=result,
                tier=DisplayTier.PREVIEW,
                body=one_line_preview(result.content, self.max_preview_chars),
                priority=index,
            )
            for index, result in enumerate(results)
        ]
