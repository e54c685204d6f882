"""Search pipeline that pairs an engine with a result formatter."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from skillfinder.config import AppConfig
from skillfinder.formatting import FormattedResult, SearchFormatter, create_formatter
from skillfinder.index.base import SearchEngine
from skillfinder.index.factory import build_search_engine
from skillfinder.index.server import ServerRegistry
from skillfinder.models import SearchResult, Source

LOGGER = logging.getLogger(__name__)


class UnifiedSearch:
    """Run a query through the configured engine and format the hits."""

    def __init__(self, engine: SearchEngine, formatter: SearchFormatter | None = None) -> None:
        self.engine = engine
        self.formatter = formatter or create_formatter("enhanced")

    @classmethod
    def for_skill(
        cls,
        skill_dir: Path,
        config: AppConfig,
        registry: ServerRegistry,
        *,
        mode: str | None = None,
        output_format: str = "enhanced",
    ) -> "UnifiedSearch":
        engine = build_search_engine(skill_dir, config, registry, mode=mode)
        return cls(engine, create_formatter(output_format))

    def build_index(self, references_dir: Path) -> None:
        self.engine.build_index(Path(references_dir))

    def search(
        self, query: str, *, top_k: int = 5, source: Source | str | None = None
    ) -> List[SearchResult]:
        return self.engine.search(query, top_k=top_k, source=source)

    def search_and_format(
        self, query: str, *, top_k: int = 5, source: Source | str | None = None
    ) -> List[FormattedResult]:
        results = self.search(query, top_k=top_k, source=source)
        LOGGER.debug("Formatting %d results with %s formatter", len(results), self.formatter.name)
        return self.formatter.format(results)

    def is_built(self) -> bool:
        return self.engine.is_built()

    def get_stats(self) -> Dict[str, Any]:
        return self.engine.get_stats()

    def clear_index(self) -> None:
        self.engine.clear_index()
