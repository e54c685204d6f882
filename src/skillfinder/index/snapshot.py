"""File hash snapshots used for incremental semantic indexing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence

from skillfinder.errors import IndexBuildError
from skillfinder.models import Document
from skillfinder.utils.files import compute_text_sha256

LOGGER = logging.getLogger(__name__)

FileHashSnapshot = Dict[str, str]


@dataclass(slots=True)
class SnapshotDiff:
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def changed(self) -> List[str]:
        """Ids that must be (re)written to the index."""
        return self.added + self.modified

    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)


def snapshot_documents(documents: Sequence[Document]) -> FileHashSnapshot:
    return {doc.id: compute_text_sha256(doc.content) for doc in documents}


def diff_snapshots(previous: FileHashSnapshot, current: FileHashSnapshot) -> SnapshotDiff:
    """Compare two snapshots; neither is modified."""
    return SnapshotDiff(
        added=sorted(path for path in current if path not in previous),
        modified=sorted(
            path for path in current if path in previous and previous[path] != current[path]
        ),
        deleted=sorted(path for path in previous if path not in current),
    )


def load_snapshot(hash_file: Path) -> FileHashSnapshot:
    """Read a snapshot; a missing or corrupt file counts as an empty snapshot."""
    if not hash_file.exists():
        return {}
    try:
        data = json.loads(hash_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable hash file %s: %s", hash_file, exc)
        return {}
    if not isinstance(data, dict):
        LOGGER.warning("Ignoring malformed hash file %s", hash_file)
        return {}
    return {str(key): str(value) for key, value in data.items()}


def save_snapshot(hash_file: Path, snapshot: FileHashSnapshot) -> None:
    try:
        hash_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = hash_file.with_suffix(hash_file.suffix + ".tmp")
        tmp_file.write_text(json.dumps(snapshot, indent=2, sort_keys=True), encoding="utf-8")
        tmp_file.replace(hash_file)
    except OSError as exc:
        raise IndexBuildError(f"Failed to write hash file {hash_file}: {exc}") from exc
