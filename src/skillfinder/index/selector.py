"""Quality-gated selection between lexical and semantic search.

Lexical search is always tried first because it is in-process and cheap. Only
when its results look weak does the selector pay for a semantic search, and any
failure on that path silently returns the lexical results instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from skillfinder.index.lexical import LexicalSearchEngine
from skillfinder.index.semantic import SemanticSearchEngine
from skillfinder.models import SearchResult, Source

LOGGER = logging.getLogger(__name__)

DEFAULT_QUALITY_THRESHOLD = 0.3
HIGH_QUALITY_SCORE = 0.8
DECENT_MEAN_SCORE = 0.5
MIN_DECENT_RESULTS = 3
LOW_QUALITY_SCORE = 0.3
FEW_RESULTS_FACTOR = 0.8


@dataclass(frozen=True, slots=True)
class QualityThresholds:
    high_score: float = HIGH_QUALITY_SCORE
    decent_mean: float = DECENT_MEAN_SCORE
    min_decent_results: int = MIN_DECENT_RESULTS
    low_score: float = LOW_QUALITY_SCORE
    few_results_factor: float = FEW_RESULTS_FACTOR


@dataclass(frozen=True, slots=True)
class QualityReport:
    score: float
    reason: str


def evaluate_quality(
    results: Sequence[SearchResult],
    query: str,
    thresholds: QualityThresholds = QualityThresholds(),
) -> QualityReport:
    """Estimate how useful a lexical result set is, as a number in [0, 1]."""
    if not results:
        return QualityReport(0.0, "No results found")

    if query.strip() and query.strip().lower() in results[0].title.lower():
        return QualityReport(1.0, "Exact title match found")

    scores = [result.score for result in results]
    max_score = max(scores)
    mean_score = sum(scores) / len(scores)

    if max_score >= thresholds.high_score:
        return QualityReport(max_score, "High quality matches found")
    if len(results) >= thresholds.min_decent_results and mean_score >= thresholds.decent_mean:
        return QualityReport(mean_score, "Multiple decent quality results")
    if max_score < thresholds.low_score:
        return QualityReport(max_score, "Low quality matches only")
    if len(results) < 2:
        return QualityReport(max_score * thresholds.few_results_factor, "Too few results")
    return QualityReport(mean_score, "Average quality results")


SemanticFactory = Callable[[], SemanticSearchEngine]


class AutoSearchEngine:
    """Lexical search first, semantic search only when lexical quality is low."""

    def __init__(
        self,
        lexical: LexicalSearchEngine,
        semantic_factory: Optional[SemanticFactory] = None,
        *,
        quality_threshold: float = DEFAULT_QUALITY_THRESHOLD,
        thresholds: QualityThresholds = QualityThresholds(),
    ) -> None:
        self.lexical = lexical
        self.quality_threshold = quality_threshold
        self.thresholds = thresholds
        self._semantic_factory = semantic_factory
        self._semantic: Optional[SemanticSearchEngine] = None
        self._references_dir: Optional[Path] = None
        self.last_quality: Optional[QualityReport] = None

    def _semantic_engine(self) -> Optional[SemanticSearchEngine]:
        if self._semantic is None and self._semantic_factory is not None:
            self._semantic = self._semantic_factory()
        return self._semantic

    def build_index(self, references_dir: Path) -> None:
        # The semantic index is built lazily, the first time a query escalates.
        self._references_dir = Path(references_dir)
        self.lexical.build_index(self._references_dir)

    def search(
        self, query: str, *, top_k: int = 5, source: Source | str | None = None
    ) -> List[SearchResult]:
        lexical_results = self.lexical.search(query, top_k=top_k, source=source)
        quality = evaluate_quality(lexical_results, query, self.thresholds)
        self.last_quality = quality
        LOGGER.info("Lexical search quality %.2f (%s)", quality.score, quality.reason)

        if quality.score >= self.quality_threshold:
            return lexical_results

        LOGGER.info("Quality below %.2f, trying semantic search", self.quality_threshold)
        try:
            semantic = self._semantic_engine()
            if semantic is None:
                return lexical_results
            with semantic.session():
                if not semantic.is_built():
                    if self._references_dir is None:
                        LOGGER.info("No references directory known, skipping semantic search")
                        return lexical_results
                    semantic.build_index(self._references_dir)
                results = semantic.search(query, top_k=top_k, source=source)
        except Exception as exc:
            LOGGER.warning("Semantic search failed, returning lexical results: %s", exc)
            return lexical_results

        LOGGER.info("Semantic search returned %d results", len(results))
        return results

    def is_built(self) -> bool:
        return self.lexical.is_built()

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.lexical.get_stats())
        stats["engine"] = "auto"
        return stats

    def clear_index(self) -> None:
        self.lexical.clear_index()
        if self._semantic is not None:
            self._semantic.clear_index()
