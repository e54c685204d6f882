"""Management of the documents stored in a skill's references directory."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from skillfinder.errors import ContentError
from skillfinder.index.base import SearchEngine
from skillfinder.ingestion.scanner import EXTERNAL_DIR, USER_DIR
from skillfinder.models import SearchResult, Source
from skillfinder.utils.files import iter_text_paths
from skillfinder.utils.text import extract_title, one_line_preview

LOGGER = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
MAX_SIMILAR_RESULTS = 10
SIMILAR_SHOWN = 3
ENHANCEMENT_FACTOR = 1.3
MAX_SLUG_LENGTH = 50


@dataclass(slots=True)
class ContentStats:
    user_files: int = 0
    external_files: int = 0
    user_dir_exists: bool = False
    external_dir_exists: bool = False

    @property
    def total_files(self) -> int:
        return self.user_files + self.external_files


@dataclass(slots=True)
class ContentItem:
    title: str
    filename: str
    source: Source
    path: Path
    size: int
    modified: datetime


@dataclass(slots=True)
class SimilarContent:
    title: str
    score: float
    source: Source
    preview: str


@dataclass(slots=True)
class AddContentResult:
    added: bool = False
    updated: bool = False
    skipped: bool = False
    message: str = ""
    file_path: Optional[Path] = None
    similar: List[SimilarContent] = field(default_factory=list)

    @property
    def similar_found(self) -> int:
        return len(self.similar)


def slugify_title(title: str, fallback: str = "content") -> str:
    """Reduce a title to word characters joined by underscores."""
    cleaned = re.sub(r"[^\w\s-]", "", title)
    cleaned = re.sub(r"[-\s]+", "_", cleaned).strip("_")
    return cleaned[:MAX_SLUG_LENGTH] or fallback


def is_content_enhanced(existing: str, new: str) -> bool:
    """New text counts as an enhancement when it has 30% more words."""
    return len(new.split()) > len(existing.split()) * ENHANCEMENT_FACTOR


class ContentManager:
    """Add, list and count reference documents of a single skill."""

    def __init__(
        self,
        references_dir: Path,
        engine: SearchEngine,
        *,
        hash_file: Path | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.references_dir = Path(references_dir)
        self.user_dir = self.references_dir / USER_DIR
        self.external_dir = self.references_dir / EXTERNAL_DIR
        self.engine = engine
        self.hash_file = hash_file
        self._clock = clock

    def get_content_stats(self) -> ContentStats:
        stats = ContentStats(
            user_dir_exists=self.user_dir.is_dir(),
            external_dir_exists=self.external_dir.is_dir(),
        )
        if stats.user_dir_exists:
            stats.user_files = sum(1 for _ in iter_text_paths([self.user_dir]))
        if stats.external_dir_exists:
            stats.external_files = sum(1 for _ in iter_text_paths([self.external_dir]))
        return stats

    def list_content(self, source: Source | str | None = None) -> List[ContentItem]:
        """Describe stored documents, most recently modified first."""
        source = Source.coerce(source)
        roots = []
        if source in (None, Source.USER):
            roots.append((Source.USER, self.user_dir))
        if source in (None, Source.EXTERNAL):
            roots.append((Source.EXTERNAL, self.external_dir))

        items: List[ContentItem] = []
        for item_source, root in roots:
            if not root.is_dir():
                continue
            for path in iter_text_paths([root]):
                try:
                    stat = path.stat()
                    text = path.read_text(encoding="utf-8", errors="replace")
                except OSError as exc:
                    LOGGER.warning("Skipping unreadable file %s: %s", path, exc)
                    continue
                title = extract_title(text, path)
                items.append(
                    ContentItem(
                        title=title,
                        filename=path.relative_to(root).as_posix(),
                        source=item_source,
                        path=path,
                        size=stat.st_size,
                        modified=datetime.fromtimestamp(stat.st_mtime),
                    )
                )

        items.sort(key=lambda item: item.modified, reverse=True)
        return items

    def find_similar_content(
        self,
        content: str,
        threshold: float = SIMILARITY_THRESHOLD,
        max_results: int = MAX_SIMILAR_RESULTS,
    ) -> List[SearchResult]:
        if not self.engine.is_built():
            self.engine.build_index(self.references_dir)
        results = self.engine.search(content, top_k=max_results)
        return [result for result in results if result.score >= threshold]

    def add_user_content(
        self,
        title: str,
        content: str,
        *,
        force: bool = False,
        auto_update: bool = False,
    ) -> AddContentResult:
        """Store a user note unless a near-duplicate already exists.

        With ``auto_update`` a similar *user* document is overwritten when the
        new text is substantially longer, and left alone otherwise.
        """
        result = AddContentResult()
        similar = [] if force else self.find_similar_content(content)

        if similar:
            best = similar[0]
            if auto_update and best.source == Source.USER:
                if is_content_enhanced(best.content, content):
                    self._write(best.path, title, content)
                    result.updated = True
                    result.file_path = best.path
                    result.message = f"Updated existing content: {best.id}"
                else:
                    result.skipped = True
                    result.message = "Existing content is comprehensive enough"
                return result

            result.message = f"Found {len(similar)} similar documents"
            result.similar = [
                SimilarContent(
                    title=match.title,
                    score=match.score,
                    source=match.source,
                    preview=one_line_preview(match.content),
                )
                for match in similar[:SIMILAR_SHOWN]
            ]
            return result

        path = self.unique_file_path(title)
        self._write(path, title, content)
        result.added = True
        result.file_path = path
        result.message = f"Created new content: {path.name}"
        return result

    def unique_file_path(self, title: str) -> Path:
        """``<slug>.<YYYYMMDD_HHMMSS>.md`` in the user directory, suffixed on collision."""
        base_name = f"{slugify_title(title)}.{self._clock().strftime('%Y%m%d_%H%M%S')}"
        candidate = self.user_dir / f"{base_name}.md"
        counter = 1
        while candidate.exists():
            candidate = self.user_dir / f"{base_name}_{counter:02d}.md"
            counter += 1
        return candidate

    def _write(self, path: Path, title: str, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"# {title}\n\n{content}", encoding="utf-8")
        except OSError as exc:
            raise ContentError(f"Failed to write {path}: {exc}") from exc
        LOGGER.info("Wrote %s", path)
        self._trigger_reindex()

    def _trigger_reindex(self) -> None:
        # The next build finds no snapshot and re-indexes everything.
        if self.hash_file is not None and self.hash_file.exists():
            self.hash_file.unlink()
        self.engine.clear_index()
