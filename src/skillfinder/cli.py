"""Command line interface for SkillFinder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from skillfinder.config import AppConfig, load_skill_config
from skillfinder.content import ContentManager
from skillfinder.errors import ConfigError, SkillFinderError
from skillfinder.formatting import FormattedResult
from skillfinder.index.factory import SEARCH_MODES, build_lexical_engine
from skillfinder.index.server import ServerRegistry
from skillfinder.index.unified import UnifiedSearch
from skillfinder.models import Source
from skillfinder.utils.text import extract_title

console = Console()
app = typer.Typer(help="SkillFinder - adaptive search for knowledge skill folders")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(skill_dir: Path) -> AppConfig:
    try:
        return load_skill_config(skill_dir).apply(AppConfig())
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _check_mode(mode: Optional[str]) -> Optional[str]:
    if mode is not None and mode not in SEARCH_MODES:
        raise typer.BadParameter(f"Invalid search mode: {mode}. Use one of {', '.join(SEARCH_MODES)}.")
    return mode


def _check_source(source: Optional[str]) -> Optional[Source]:
    if source is None or source == "all":
        return None
    try:
        return Source.coerce(source)
    except ValueError as exc:
        raise typer.BadParameter(f"Unknown source: {source}. Use user, external or all.") from exc


SkillDirOption = typer.Option(
    None, "--skill-dir", "-d", help="Skill directory (defaults to the current directory)"
)


def _resolve_skill_dir(skill_dir: Optional[Path]) -> Path:
    return (skill_dir or Path.cwd()).resolve()


def _print_enhanced(formatted: List[FormattedResult]) -> None:
    for item in formatted:
        result = item.result
        console.print(
            f"[bold]{item.priority + 1}. {result.title}[/bold] "
            f"[dim]({result.source.value}, score {result.score:.2f}, {item.tier.value})[/dim]"
        )
        console.print(f"   [cyan]{result.id}[/cyan]", highlight=False)
        if item.body:
            console.print(item.body, markup=False, highlight=False)
        console.print()


def _print_list(formatted: List[FormattedResult]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Title")
    table.add_column("Source")
    table.add_column("Preview")

    for item in formatted:
        result = item.result
        table.add_row(f"{result.score:.4f}", result.title, result.source.value, item.body)

    console.print(table)


@app.command()
def index(
    skill_dir: Optional[Path] = SkillDirOption,
    mode: Optional[str] = typer.Option(None, help="Search mode: auto, lexical or semantic"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Build (or incrementally update) the search index of a skill."""
    _setup_logging(verbose)
    root = _resolve_skill_dir(skill_dir)
    config = _load_config(root)
    references_dir = config.resolve_references_dir(root)

    console.print(f"Indexing [bold]{references_dir}[/bold]...")
    with ServerRegistry() as registry:
        search = UnifiedSearch.for_skill(root, config, registry, mode=_check_mode(mode))
        try:
            search.build_index(references_dir)
        except SkillFinderError as exc:
            console.print(f"[red]Indexing failed: {exc}[/red]")
            raise typer.Exit(code=1) from exc
        stats = search.get_stats()

    console.print(f"Indexed documents: {stats.get('total_documents', 0)}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    skill_dir: Optional[Path] = SkillDirOption,
    top_k: int = typer.Option(5, "--top-k", "-k", help="Number of results to display"),
    source: Optional[str] = typer.Option(None, help="Filter by source: user, external or all"),
    mode: Optional[str] = typer.Option(None, help="Search mode: auto, lexical or semantic"),
    as_list: bool = typer.Option(False, "--list", help="Compact list output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search the references of a skill."""
    _setup_logging(verbose)
    root = _resolve_skill_dir(skill_dir)
    config = _load_config(root)
    references_dir = config.resolve_references_dir(root)
    source_filter = _check_source(source)

    if not references_dir.is_dir():
        raise typer.BadParameter(f"References directory not found: {references_dir}")

    with ServerRegistry() as registry:
        unified = UnifiedSearch.for_skill(
            root,
            config,
            registry,
            mode=_check_mode(mode),
            output_format="list" if as_list else "enhanced",
        )
        try:
            unified.build_index(references_dir)
            formatted = unified.search_and_format(query, top_k=top_k, source=source_filter)
        except SkillFinderError as exc:
            console.print(f"[red]Search failed: {exc}[/red]")
            raise typer.Exit(code=1) from exc

    if not formatted:
        console.print("[yellow]No matches found.[/yellow]")
        return

    if as_list:
        _print_list(formatted)
    else:
        _print_enhanced(formatted)


@app.command()
def stats(skill_dir: Optional[Path] = SkillDirOption) -> None:
    """Show how many documents a skill holds."""
    root = _resolve_skill_dir(skill_dir)
    config = _load_config(root)
    references_dir = config.resolve_references_dir(root)

    manager = ContentManager(references_dir, build_lexical_engine(config))
    content_stats = manager.get_content_stats()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source")
    table.add_column("Files")
    table.add_row("user", str(content_stats.user_files))
    table.add_row("external", str(content_stats.external_files))
    table.add_row("total", str(content_stats.total_files))
    console.print(table)


@app.command("list")
def list_content(
    skill_dir: Optional[Path] = SkillDirOption,
    source: Optional[str] = typer.Option(None, help="Filter by source: user, external or all"),
) -> None:
    """List stored reference documents, newest first."""
    root = _resolve_skill_dir(skill_dir)
    config = _load_config(root)
    manager = ContentManager(config.resolve_references_dir(root), build_lexical_engine(config))

    items = manager.list_content(_check_source(source))
    if not items:
        console.print("[yellow]No content found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Title")
    table.add_column("Source")
    table.add_column("Size")
    table.add_column("Modified")
    for item in items:
        table.add_row(
            item.title,
            item.source.value,
            str(item.size),
            item.modified.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def add(
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Document title"),
    content: Optional[str] = typer.Option(None, "--content", "-c", help="Document body"),
    file: Optional[Path] = typer.Option(
        None, "--file", "-f", help="Read the body from a file", exists=True, dir_okay=False
    ),
    skill_dir: Optional[Path] = SkillDirOption,
    force: bool = typer.Option(False, "--force", help="Add even when similar content exists"),
    no_update: bool = typer.Option(
        False, "--no-update", help="Never overwrite a similar existing user document"
    ),
) -> None:
    """Add a user note to the skill's references."""
    if not title and file is None:
        raise typer.BadParameter("Please provide either --title or --file")

    body = content or ""
    if file is not None:
        body = file.read_text(encoding="utf-8")
        if not title:
            title = extract_title(body, file)

    root = _resolve_skill_dir(skill_dir)
    config = _load_config(root)
    manager = ContentManager(
        config.resolve_references_dir(root),
        build_lexical_engine(config),
        hash_file=config.resolve_hash_file(root),
    )
    try:
        result = manager.add_user_content(title, body, force=force, auto_update=not no_update)
    except SkillFinderError as exc:
        console.print(f"[red]Failed to add content: {exc}[/red]")
        raise typer.Exit(code=1) from exc

    console.print(result.message)
    if result.similar:
        console.print("\nSimilar content found:")
        for position, similar in enumerate(result.similar, start=1):
            console.print(f"{position}. [{similar.score:.2f}] {similar.title}", markup=False)
            console.print(f"   Source: {similar.source.value}")
            console.print(f"   Preview: {similar.preview}", markup=False)


@app.command()
def clear(
    skill_dir: Optional[Path] = SkillDirOption,
    mode: Optional[str] = typer.Option(None, help="Search mode: auto, lexical or semantic"),
) -> None:
    """Drop the search index so the next build starts from scratch."""
    root = _resolve_skill_dir(skill_dir)
    config = _load_config(root)

    hash_file = config.resolve_hash_file(root)
    with ServerRegistry() as registry:
        UnifiedSearch.for_skill(root, config, registry, mode=_check_mode(mode)).clear_index()
    if hash_file.exists():
        hash_file.unlink()
    console.print("Search index cleared.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8080, help="Server port"),
    skill_dir: Optional[Path] = SkillDirOption,
) -> None:
    """Start the HTTP search API."""
    import uvicorn

    from skillfinder.web.app import app as web_app

    root = _resolve_skill_dir(skill_dir)
    web_app.state.skill_dir = root
    console.print(f"Starting web API on http://{host}:{port} (skill: {root})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
