"""Shared fixtures for SkillFinder tests."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest

from skillfinder.index.server import ServerRegistry


def write_doc(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def skill_dir(tmp_path: Path) -> Path:
    """A skill folder with two user notes and one external document."""
    root = tmp_path / "skill"
    references = root / "assets" / "references"
    write_doc(
        references,
        "user/setup-guide.md",
        "# Setup Guide\n\nInstall the package with pip.\nThen run the init command.\n",
    )
    write_doc(
        references,
        "user/faq.md",
        "# FAQ\n\nCommon questions about licensing and support.\n",
    )
    write_doc(
        references,
        "external/demo/api-reference.md",
        "# API Reference\n\nThe client exposes search and index methods.\n",
    )
    return root


@pytest.fixture
def references_dir(skill_dir: Path) -> Path:
    return skill_dir / "assets" / "references"


def fake_process() -> MagicMock:
    """A process handle that stays alive until terminated."""
    process = MagicMock()
    process.pid = 4242
    process.poll.return_value = None
    process.wait.return_value = 0
    return process


@pytest.fixture
def fake_spawn() -> MagicMock:
    return MagicMock(side_effect=lambda *args, **kwargs: fake_process())


@pytest.fixture
def fake_registry(fake_spawn: MagicMock) -> Iterator[ServerRegistry]:
    """A registry whose servers are mock processes on increasing ports."""
    with patch("skillfinder.index.server.wait_for_port", return_value=True), patch(
        "skillfinder.index.server.find_available_port", side_effect=itertools.count(9100)
    ):
        with ServerRegistry(spawn=fake_spawn, watch_processes=False) as registry:
            yield registry
