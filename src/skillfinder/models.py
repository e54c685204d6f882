"""Core SkillFinder data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class Source(str, Enum):
    """Origin of a reference document."""

    USER = "user"
    EXTERNAL = "external"

    @classmethod
    def coerce(cls, value: "Source | str | None") -> Optional["Source"]:
        if value is None or isinstance(value, Source):
            return value
        return cls(value.lower())


class DisplayTier(str, Enum):
    """How much of a matched document is revealed to the caller."""

    FULL = "full"
    PREVIEW = "preview"
    METADATA = "metadata"


@dataclass(frozen=True, slots=True)
class Document:
    """A reference document read from the skill folder."""

    id: str
    title: str
    content: str
    source: Source
    path: Path
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SearchResult:
    """A ranked hit for a single query.

    ``match_ranges`` holds ``(start, end)`` character offsets into ``content``
    and is only populated for lexical content matches.
    """

    id: str
    title: str
    content: str
    source: Source
    path: Path
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    match_ranges: Optional[List[Tuple[int, int]]] = None

    @classmethod
    def from_document(
        cls,
        document: Document,
        score: float,
        *,
        match_type: str,
        match_ranges: Optional[List[Tuple[int, int]]] = None,
    ) -> "SearchResult":
        return cls(
            id=document.id,
            title=document.title,
            content=document.content,
            source=document.source,
            path=document.path,
            score=score,
            metadata={**document.metadata, "match_type": match_type},
            match_ranges=match_ranges,
        )
