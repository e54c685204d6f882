"""Build the search engine matching a configured mode."""

from __future__ import annotations

from pathlib import Path

from skillfinder.config import AppConfig
from skillfinder.embedding.encoder import EmbeddingConfig, EmbeddingModel
from skillfinder.index.base import SearchEngine
from skillfinder.index.lexical import LexicalSearchEngine
from skillfinder.index.matching import FuzzyMatcher
from skillfinder.index.selector import AutoSearchEngine, QualityThresholds
from skillfinder.index.semantic import SemanticSearchEngine
from skillfinder.index.server import ServerConfig, ServerRegistry

SEARCH_MODES = ("auto", "lexical", "semantic")


def build_lexical_engine(config: AppConfig) -> LexicalSearchEngine:
    return LexicalSearchEngine(matcher=FuzzyMatcher(score_cutoff=config.fuzzy_threshold))


def build_semantic_engine(
    skill_dir: Path,
    config: AppConfig,
    registry: ServerRegistry,
    *,
    fallback: LexicalSearchEngine | None = None,
) -> SemanticSearchEngine:
    server_config = ServerConfig(
        skill_dir=Path(skill_dir),
        base_port=config.base_port,
        max_port=config.max_port,
        startup_timeout=config.startup_timeout,
    )
    return SemanticSearchEngine(
        skill_dir,
        registry=registry,
        server_config=server_config,
        collection_name=config.collection_name,
        embedder=EmbeddingModel(EmbeddingConfig(model_name=config.model_name)),
        fallback=fallback,
        batch_size=config.batch_size,
        hash_file=config.resolve_hash_file(Path(skill_dir)),
    )


def build_search_engine(
    skill_dir: Path,
    config: AppConfig,
    registry: ServerRegistry,
    *,
    mode: str | None = None,
) -> SearchEngine:
    """Select the engine strategy for ``mode`` (defaults to ``config.mode``)."""
    mode = mode or config.mode
    if mode == "lexical":
        return build_lexical_engine(config)

    if mode == "semantic":
        fallback = build_lexical_engine(config) if config.enable_fallback else None
        return build_semantic_engine(skill_dir, config, registry, fallback=fallback)

    if mode == "auto":
        return AutoSearchEngine(
            build_lexical_engine(config),
            lambda: build_semantic_engine(skill_dir, config, registry),
            quality_threshold=config.quality_threshold,
            thresholds=QualityThresholds(high_score=config.high_quality_score),
        )

    raise ValueError(f"Invalid search mode: {mode}. Use one of {', '.join(SEARCH_MODES)}.")
