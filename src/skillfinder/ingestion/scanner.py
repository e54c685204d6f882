"""Reference document scanning.

A skill keeps its documents under ``references/user`` (written by people) and
``references/external/<project>`` (fetched from upstream documentation).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from skillfinder.errors import IndexBuildError
from skillfinder.models import Document, Source
from skillfinder.utils.files import iter_text_paths
from skillfinder.utils.text import extract_title

LOGGER = logging.getLogger(__name__)

EXTERNAL_DIR = "external"
USER_DIR = "user"


def classify_source(relative_path: Path) -> Source:
    parts = relative_path.parts
    if parts and parts[0] == EXTERNAL_DIR:
        return Source.EXTERNAL
    return Source.USER


def load_document(path: Path, references_dir: Path) -> Document:
    """Read a single reference file into a :class:`Document`."""
    relative = path.relative_to(references_dir)
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
        size = path.stat().st_size
    except OSError as exc:
        raise IndexBuildError(f"Failed to read {path}: {exc}") from exc

    return Document(
        id=relative.as_posix(),
        title=extract_title(content, path),
        content=content,
        source=classify_source(relative),
        path=path,
        metadata={"file_name": relative.as_posix(), "size": size},
    )


def scan_references(references_dir: Path) -> List[Document]:
    """Load every text document below ``references_dir``, sorted by relative path."""
    references_dir = Path(references_dir)
    if not references_dir.is_dir():
        LOGGER.warning("References directory %s does not exist", references_dir)
        return []

    try:
        paths = list(iter_text_paths([references_dir]))
    except OSError as exc:
        raise IndexBuildError(f"Failed to scan {references_dir}: {exc}") from exc

    documents = [load_document(path, references_dir) for path in paths]
    LOGGER.debug("Scanned %d documents in %s", len(documents), references_dir)
    return documents
