"""Text helpers for titles and line-oriented previews."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

_HEADING_PREFIX = re.compile(r"^#+\s*")


def extract_title(content: str, path: Path) -> str:
    """Use the first line (without markdown heading marks) or fall back to the file name."""
    first_line = content.split("\n", 1)[0]
    title = _HEADING_PREFIX.sub("", first_line).strip()
    if title:
        return title
    return re.sub(r"[-_]+", " ", path.stem).strip() or path.name


@dataclass(frozen=True, slots=True)
class LineSpan:
    number: int
    start: int
    end: int
    text: str


def line_spans(content: str) -> List[LineSpan]:
    """Map every line to its character range, with 1-based line numbers."""
    spans: List[LineSpan] = []
    position = 0
    for index, line in enumerate(content.split("\n")):
        end = position + len(line)
        spans.append(LineSpan(number=index + 1, start=position, end=end, text=line))
        position = end + 1
    return spans


def lines_for_ranges(content: str, ranges: Iterable[Tuple[int, int]]) -> List[LineSpan]:
    """Return the lines overlapping any of the ``(start, end)`` character ranges."""
    spans = line_spans(content)
    selected: dict[int, LineSpan] = {}
    for start, end in ranges:
        for span in spans:
            if start < span.end and end > span.start:
                selected[span.number] = span
    return [selected[number] for number in sorted(selected)]


def representative_lines(content: str) -> List[LineSpan]:
    """First, middle and last lines of a document, without duplicates."""
    spans = line_spans(content)
    if not spans:
        return []
    picks = [0]
    if len(spans) > 2:
        picks.append(len(spans) // 2)
    if len(spans) > 1:
        picks.append(len(spans) - 1)
    return [spans[index] for index in picks]


def number_lines(spans: Sequence[LineSpan]) -> str:
    return "\n".join(f"{span.number}: {span.text}" for span in spans)


def one_line_preview(text: str, max_chars: int = 200) -> str:
    """Collapse newlines and cut the text to ``max_chars`` characters."""
    flat = text.replace("\n", " ")
    if len(flat) <= max_chars:
        return flat
    return flat[:max_chars] + "..."
