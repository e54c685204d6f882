"""Three-tier content disclosure for ranked search results.

The best match is shown in full, results at or above the trimmed mean score get
a line-numbered preview, and everything below that only exposes metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Sequence

from skillfinder.models import DisplayTier, SearchResult
from skillfinder.utils.text import lines_for_ranges, number_lines, representative_lines

SCORE_TOLERANCE = 1e-9


@dataclass(slots=True)
class FormattedResult:
    result: SearchResult
    tier: DisplayTier
    body: str
    priority: int
    line_numbers: List[int] = field(default_factory=list)


def modified_average(scores: Sequence[float]) -> float:
    """Trimmed mean: drop the lowest and highest score when there are three or more.

    With one or two scores the minimum is used, so the weaker of two results
    still qualifies for a preview.
    """
    if not scores:
        return 0.0
    if len(scores) <= 2:
        return min(scores)
    middle = sorted(scores)[1:-1]
    return sum(middle) / len(middle)


def assign_tier(score: float, max_score: float, threshold: float) -> DisplayTier:
    if abs(score - max_score) <= SCORE_TOLERANCE:
        return DisplayTier.FULL
    if score >= threshold:
        return DisplayTier.PREVIEW
    return DisplayTier.METADATA


def render_full(content: str) -> str:
    line_count = len(content.split("\n"))
    return f'<content lines="{line_count}">\n{content}\n</content>'


def render_preview(result: SearchResult) -> tuple[str, List[int]]:
    spans = lines_for_ranges(result.content, result.match_ranges) if result.match_ranges else []
    if not spans:
        spans = representative_lines(result.content)
    numbers = [span.number for span in spans]
    joined = ",".join(str(number) for number in numbers)
    return f'<limit-content line-numbers="{joined}">\n{number_lines(spans)}\n</limit-content>', numbers


class TieredFormatter:
    """Decide per result how much of the document body to reveal."""

    name = "enhanced"
    description = "Three-tier format: full content, line preview, or metadata only"

    def format(self, results: Sequence[SearchResult]) -> List[FormattedResult]:
        if not results:
            return []

        scores = [result.score for result in results]
        max_score = max(scores)
        threshold = modified_average(scores)

        formatted: List[FormattedResult] = []
        for priority, result in enumerate(results):
            tier = assign_tier(result.score, max_score, threshold)
            annotated = replace(
                result,
                metadata={
                    **result.metadata,
                    "display_tier": tier.value,
                    "max_score": max_score,
                    "modified_average": threshold,
                },
            )
            line_numbers: List[int] = []
            if tier is DisplayTier.FULL:
                body = render_full(result.content)
            elif tier is DisplayTier.PREVIEW:
                body, line_numbers = render_preview(result)
            else:
                body = ""
            formatted.append(
                FormattedResult(
                    result=annotated,
                    tier=tier,
                    body=body,
                    priority=priority,
                    line_numbers=line_numbers,
                )
            )
        return formatted
