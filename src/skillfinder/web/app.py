"""FastAPI application exposing SkillFinder search over HTTP."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from skillfinder.config import AppConfig, load_skill_config
from skillfinder.content import ContentManager
from skillfinder.errors import ConfigError, SkillFinderError
from skillfinder.formatting import FormattedResult
from skillfinder.index.factory import SEARCH_MODES, build_lexical_engine
from skillfinder.index.server import ServerRegistry
from skillfinder.index.unified import UnifiedSearch
from skillfinder.models import Source

LOGGER = logging.getLogger(__name__)

MAX_TOP_K = 50

app = FastAPI(title="SkillFinder API", version="0.1.0")


class SearchPayload(BaseModel):
    query: str
    skill_dir: Path | None = None
    top_k: int = 5
    source: str | None = None
    mode: str | None = None
    format: str = "enhanced"


class IndexPayload(BaseModel):
    skill_dir: Path | None = None
    mode: str | None = None


def _skill_dir(requested: Path | None) -> Path:
    if requested is not None:
        return requested.expanduser().resolve()
    return getattr(app.state, "skill_dir", None) or Path.cwd()


def _load_config(skill_dir: Path) -> AppConfig:
    try:
        return load_skill_config(skill_dir).apply(AppConfig())
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _registry(request: Request) -> ServerRegistry:
    """The server registry owned by the running application."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        # Handlers served without the startup hook still get an owned registry.
        registry = request.app.state.registry = ServerRegistry()
    return registry


def _serialize(item: FormattedResult) -> Dict[str, Any]:
    result = item.result
    return {
        "id": result.id,
        "title": result.title,
        "source": result.source.value,
        "path": str(result.path),
        "score": result.score,
        "tier": item.tier.value,
        "body": item.body,
        "line_numbers": item.line_numbers,
        "match_type": result.metadata.get("match_type"),
    }


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    app.state.registry = ServerRegistry()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    registry = getattr(app.state, "registry", None)
    if registry is not None:
        await asyncio.to_thread(registry.stop_all)


def _run_search(
    payload: SearchPayload, skill_dir: Path, config: AppConfig, registry: ServerRegistry
) -> List[Dict[str, Any]]:
    unified = UnifiedSearch.for_skill(
        skill_dir, config, registry, mode=payload.mode, output_format=payload.format
    )
    unified.build_index(config.resolve_references_dir(skill_dir))
    top_k = max(1, min(payload.top_k, MAX_TOP_K))
    formatted = unified.search_and_format(payload.query.strip(), top_k=top_k, source=payload.source)
    return [_serialize(item) for item in formatted]


@app.post("/search")
async def search_documents(payload: SearchPayload, request: Request) -> dict[str, Any]:
    if not payload.query.strip():
        raise HTTPException(status_code=400, detail="Empty query")
    if payload.mode is not None and payload.mode not in SEARCH_MODES:
        raise HTTPException(status_code=400, detail=f"Invalid search mode: {payload.mode}")
    if payload.format not in ("enhanced", "list"):
        raise HTTPException(status_code=400, detail=f"Unknown format: {payload.format}")
    if payload.source is not None:
        try:
            Source.coerce(payload.source)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unknown source: {payload.source}") from exc

    skill_dir = _skill_dir(payload.skill_dir)
    config = _load_config(skill_dir)
    if not config.resolve_references_dir(skill_dir).is_dir():
        raise HTTPException(status_code=404, detail=f"No references directory in {skill_dir}")

    try:
        results = await asyncio.to_thread(
            _run_search, payload, skill_dir, config, _registry(request)
        )
    except SkillFinderError as exc:
        LOGGER.exception("Search failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"results": results}


def _run_index_job(
    skill_dir: Path, config: AppConfig, mode: str | None, registry: ServerRegistry
) -> dict[str, Any]:
    unified = UnifiedSearch.for_skill(skill_dir, config, registry, mode=mode)
    unified.build_index(config.resolve_references_dir(skill_dir))
    return unified.get_stats()


@app.post("/index")
async def index_documents(payload: IndexPayload, request: Request) -> dict[str, Any]:
    if payload.mode is not None and payload.mode not in SEARCH_MODES:
        raise HTTPException(status_code=400, detail=f"Invalid search mode: {payload.mode}")

    skill_dir = _skill_dir(payload.skill_dir)
    config = _load_config(skill_dir)
    try:
        stats = await asyncio.to_thread(
            _run_index_job, skill_dir, config, payload.mode, _registry(request)
        )
    except SkillFinderError as exc:
        LOGGER.exception("Indexing failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"status": "ok", "skill_dir": str(skill_dir), "stats": stats}


@app.get("/stats")
async def content_stats(skill_dir: Path | None = None) -> dict[str, Any]:
    root = _skill_dir(skill_dir)
    config = _load_config(root)
    manager = ContentManager(config.resolve_references_dir(root), build_lexical_engine(config))
    stats = manager.get_content_stats()
    return {
        "user_files": stats.user_files,
        "external_files": stats.external_files,
        "total_files": stats.total_files,
    }


@app.get("/documents")
async def list_documents(skill_dir: Path | None = None, source: str | None = None) -> dict[str, Any]:
    """List stored reference documents, newest first."""
    root = _skill_dir(skill_dir)
    config = _load_config(root)
    manager = ContentManager(config.resolve_references_dir(root), build_lexical_engine(config))
    try:
        items = manager.list_content(source)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown source: {source}") from exc
    return {
        "documents": [
            {
                "title": item.title,
                "filename": item.filename,
                "source": item.source.value,
                "path": str(item.path),
                "size": item.size,
                "modified": item.modified.isoformat(),
            }
            for item in items
        ]
    }
