"""In-memory fuzzy search over titles, contents and file names."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Literal, Sequence

from skillfinder.index.matching import FuzzyMatcher, split_terms
from skillfinder.ingestion.scanner import scan_references
from skillfinder.models import Document, SearchResult, Source

LOGGER = logging.getLogger(__name__)

ScoringMode = Literal["enhanced", "weighted"]

# Filters in priority order; a document keeps the score of the first filter that matched it.
FIELD_WEIGHTS = (
    ("title", 1.0),
    ("content", 0.7),
    ("filename", 0.5),
)

USER_PRIORITY_BOOST = 0.2


class LexicalSearchEngine:
    """Fuzzy search engine that keeps every document in memory.

    ``scoring="weighted"`` gives each hit the fixed weight of the field it
    matched. ``scoring="enhanced"`` scales that weight by the alignment quality,
    producing the continuous scores the tiered formatter needs.
    """

    def __init__(
        self,
        *,
        scoring: ScoringMode = "enhanced",
        matcher: FuzzyMatcher | None = None,
    ) -> None:
        self.scoring = scoring
        self.matcher = matcher or FuzzyMatcher()
        self._documents: List[Document] = []

    @property
    def documents(self) -> Sequence[Document]:
        return tuple(self._documents)

    def build_index(self, references_dir: Path) -> None:
        """Replace the index with the documents currently on disk."""
        documents = scan_references(Path(references_dir))
        self._documents = documents
        if not documents:
            LOGGER.info("No documentation files found to index in %s", references_dir)
        else:
            LOGGER.info("Lexical index built with %d documents", len(documents))

    def index_documents(self, documents: Sequence[Document]) -> None:
        self._documents = list(documents)

    def _field_values(self, documents: Sequence[Document], field: str) -> List[str]:
        if field == "title":
            return [doc.title for doc in documents]
        if field == "content":
            return [doc.content for doc in documents]
        return [doc.id for doc in documents]

    def search(
        self, query: str, *, top_k: int = 5, source: Source | str | None = None
    ) -> List[SearchResult]:
        if not query.strip() or top_k <= 0:
            return []

        source = Source.coerce(source)
        documents = [doc for doc in self._documents if source is None or doc.source == source]
        if not documents:
            return []

        query_length = sum(len(term) for term in split_terms(query))
        seen: set[str] = set()
        results: List[SearchResult] = []

        for field, weight in FIELD_WEIGHTS:
            for match in self.matcher.filter(self._field_values(documents, field), query):
                doc = documents[match.index]
                if doc.id in seen:
                    continue
                seen.add(doc.id)
                if self.scoring == "enhanced":
                    score = weight * self.matcher.score(match, query_length)
                else:
                    score = weight
                results.append(
                    SearchResult.from_document(
                        doc,
                        score,
                        match_type=field,
                        match_ranges=list(match.ranges) if field == "content" else None,
                    )
                )

        results.sort(key=lambda result: result.score, reverse=True)
        return results[:top_k]

    def search_by_priority(self, query: str, top_k: int = 5) -> List[SearchResult]:
        """Split the budget between sources and rank user-written notes higher."""
        per_source = math.ceil(top_k / 2)
        combined = self.search(query, top_k=per_source, source=Source.USER) + self.search(
            query, top_k=per_source, source=Source.EXTERNAL
        )
        combined.sort(
            key=lambda result: result.score
            + (USER_PRIORITY_BOOST if result.source == Source.USER else 0.0),
            reverse=True,
        )
        return combined[:top_k]

    def is_built(self) -> bool:
        return bool(self._documents)

    def get_stats(self) -> Dict[str, Any]:
        user_docs = sum(1 for doc in self._documents if doc.source == Source.USER)
        return {
            "total_documents": len(self._documents),
            "user_documents": user_docs,
            "external_documents": len(self._documents) - user_docs,
            "engine": "lexical",
        }

    def clear_index(self) -> None:
        self._documents = []
