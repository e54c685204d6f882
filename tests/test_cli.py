"""Tests for CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from skillfinder.cli import _setup_logging, app
from skillfinder.web.app import app as web_app

runner = CliRunner()


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("skillfinder.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("skillfinder.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestIndexCommand:
    """Tests for the index command."""

    def test_index_lexical(self, skill_dir: Path) -> None:
        result = runner.invoke(app, ["index", "--skill-dir", str(skill_dir), "--mode", "lexical"])

        assert result.exit_code == 0
        assert "Indexed documents: 3" in result.stdout

    def test_index_invalid_mode(self, skill_dir: Path) -> None:
        result = runner.invoke(app, ["index", "--skill-dir", str(skill_dir), "--mode", "hybrid"])

        assert result.exit_code != 0


class TestSearchCommand:
    """Tests for the search command."""

    def test_search_enhanced(self, skill_dir: Path) -> None:
        """The best match is printed with its full content."""
        result = runner.invoke(
            app, ["search", "setup", "--skill-dir", str(skill_dir), "--mode", "lexical"]
        )

        assert result.exit_code == 0
        assert "Setup Guide" in result.stdout
        assert '<content lines="5">' in result.stdout
        assert "Install the package with pip." in result.stdout

    def test_search_list(self, skill_dir: Path) -> None:
        result = runner.invoke(
            app, ["search", "setup", "--skill-dir", str(skill_dir), "--mode", "lexical", "--list"]
        )

        assert result.exit_code == 0
        assert "Setup Guide" in result.stdout
        assert "<content" not in result.stdout

    def test_search_no_matches(self, skill_dir: Path) -> None:
        result = runner.invoke(
            app, ["search", "zzz-no-match", "--skill-dir", str(skill_dir), "--mode", "lexical"]
        )

        assert result.exit_code == 0
        assert "No matches found" in result.stdout

    def test_search_source_filter(self, skill_dir: Path) -> None:
        result = runner.invoke(
            app,
            ["search", "the", "--skill-dir", str(skill_dir), "--mode", "lexical", "--source", "external"],
        )

        assert result.exit_code == 0
        assert "API Reference" in result.stdout
        assert "Setup Guide" not in result.stdout

    def test_search_invalid_source(self, skill_dir: Path) -> None:
        result = runner.invoke(
            app, ["search", "setup", "--skill-dir", str(skill_dir), "--source", "web"]
        )

        assert result.exit_code != 0

    def test_search_missing_references(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["search", "setup", "--skill-dir", str(tmp_path)])

        assert result.exit_code != 0

    def test_search_uses_skill_config(self, skill_dir: Path) -> None:
        """The mode from config.json applies when --mode is omitted."""
        (skill_dir / "config.json").write_text('{"search_mode": "lexical"}')

        with patch("skillfinder.cli.UnifiedSearch.for_skill") as mock_for_skill:
            mock_for_skill.return_value.search_and_format.return_value = []
            result = runner.invoke(app, ["search", "setup", "--skill-dir", str(skill_dir)])

        assert result.exit_code == 0
        config = mock_for_skill.call_args[0][1]
        assert config.mode == "lexical"

    def test_search_invalid_config(self, skill_dir: Path) -> None:
        (skill_dir / "config.json").write_text("{broken")

        result = runner.invoke(app, ["search", "setup", "--skill-dir", str(skill_dir)])

        assert result.exit_code != 0


class TestContentCommands:
    """Tests for stats, list, add and clear."""

    def test_stats(self, skill_dir: Path) -> None:
        result = runner.invoke(app, ["stats", "--skill-dir", str(skill_dir)])

        assert result.exit_code == 0
        assert "user" in result.stdout
        assert "3" in result.stdout

    def test_list(self, skill_dir: Path) -> None:
        result = runner.invoke(app, ["list", "--skill-dir", str(skill_dir), "--source", "user"])

        assert result.exit_code == 0
        assert "FAQ" in result.stdout
        assert "API Reference" not in result.stdout

    def test_list_empty(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["list", "--skill-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "No content found" in result.stdout

    def test_add(self, skill_dir: Path) -> None:
        result = runner.invoke(
            app,
            [
                "add",
                "--skill-dir",
                str(skill_dir),
                "--title",
                "Deploy Notes",
                "--content",
                "Push the container to the registry",
            ],
        )

        assert result.exit_code == 0
        assert "Created new content" in result.stdout
        created = list((skill_dir / "assets" / "references" / "user").glob("Deploy_Notes.*.md"))
        assert len(created) == 1

    def test_add_from_file(self, skill_dir: Path, tmp_path: Path) -> None:
        source = tmp_path / "note.md"
        source.write_text("# Rollback Plan\n\nRevert the last release.")

        result = runner.invoke(app, ["add", "--skill-dir", str(skill_dir), "--file", str(source)])

        assert result.exit_code == 0
        created = list((skill_dir / "assets" / "references" / "user").glob("Rollback_Plan.*.md"))
        assert len(created) == 1

    def test_add_similar(self, skill_dir: Path) -> None:
        result = runner.invoke(
            app,
            ["add", "--skill-dir", str(skill_dir), "--title", "Again", "--content", "Setup Guide", "--no-update"],
        )

        assert result.exit_code == 0
        assert "Similar content found" in result.stdout

    def test_add_requires_title_or_file(self, skill_dir: Path) -> None:
        result = runner.invoke(app, ["add", "--skill-dir", str(skill_dir), "--content", "x"])

        assert result.exit_code != 0

    def test_clear(self, skill_dir: Path) -> None:
        hash_file = skill_dir / "assets" / ".index_hashes.json"
        hash_file.write_text("{}")

        result = runner.invoke(app, ["clear", "--skill-dir", str(skill_dir), "--mode", "lexical"])

        assert result.exit_code == 0
        assert "Search index cleared" in result.stdout
        assert not hash_file.exists()


class TestWebCommand:
    """Tests for the web command."""

    def test_web_runs_uvicorn(self, skill_dir: Path) -> None:
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(
                app, ["web", "--skill-dir", str(skill_dir), "--host", "0.0.0.0", "--port", "9000"]
            )

        assert result.exit_code == 0
        mock_run.assert_called_once()
        assert mock_run.call_args[1]["host"] == "0.0.0.0"
        assert mock_run.call_args[1]["port"] == 9000
        try:
            assert web_app.state.skill_dir == skill_dir.resolve()
        finally:
            del web_app.state.skill_dir
