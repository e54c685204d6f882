"""Application configuration defaults."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ValidationError

from skillfinder.embedding.encoder import DEFAULT_MODEL
from skillfinder.errors import ConfigError

LOGGER = logging.getLogger(__name__)

SearchMode = Literal["auto", "lexical", "semantic"]

DEFAULT_REFERENCES_DIR = Path("assets/references")
DEFAULT_HASH_FILE_NAME = ".index_hashes.json"
CONFIG_FILE_NAME = "config.json"


@dataclass(slots=True)
class AppConfig:
    references_dir: Path = DEFAULT_REFERENCES_DIR
    hash_file: Path | None = None
    mode: SearchMode = "auto"
    top_k: int = 5
    quality_threshold: float = 0.3
    high_quality_score: float = 0.8
    fuzzy_threshold: float = 80.0
    collection_name: str = "skills"
    startup_timeout: float = 15.0
    base_port: int = 8000
    max_port: int = 9000
    batch_size: int = 50
    enable_fallback: bool = True
    model_name: str = DEFAULT_MODEL

    def resolve_references_dir(self, base_dir: Path | None = None) -> Path:
        if Path(self.references_dir).is_absolute() or base_dir is None:
            return Path(self.references_dir)
        return base_dir / self.references_dir

    def resolve_hash_file(self, base_dir: Path | None = None) -> Path:
        """The snapshot file sits next to the references directory unless overridden."""
        if self.hash_file is not None:
            if Path(self.hash_file).is_absolute() or base_dir is None:
                return Path(self.hash_file)
            return base_dir / self.hash_file
        return self.resolve_references_dir(base_dir).parent / DEFAULT_HASH_FILE_NAME


class SkillConfig(BaseModel):
    """Per-skill settings stored in ``config.json`` at the skill root."""

    name: str | None = None
    package_name: str | None = None
    external_project_id: str | None = None
    search_mode: SearchMode = "auto"
    quality_threshold: float | None = None
    startup_timeout: float | None = None

    def apply(self, config: AppConfig) -> AppConfig:
        """Overlay the skill's own settings on top of application defaults."""
        config.mode = self.search_mode
        if self.quality_threshold is not None:
            config.quality_threshold = self.quality_threshold
        if self.startup_timeout is not None:
            config.startup_timeout = self.startup_timeout
        return config


def load_skill_config(skill_dir: Path) -> SkillConfig:
    """Load ``config.json`` from a skill directory, falling back to defaults when absent."""
    config_path = Path(skill_dir) / CONFIG_FILE_NAME
    if not config_path.exists():
        LOGGER.warning("%s not found, using default configuration", config_path)
        return SkillConfig()
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
        return SkillConfig.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise ConfigError(f"Failed to load config from {config_path}: {exc}") from exc
