"""
Configuration models for the theme registry.

The config file is JSON with camelCase keys (snake_case is accepted too).
Every field has a default, and a missing or unreadable file yields the
defaults instead of an error.
"""

import json
import logging
from pathlib import Path
from typing import List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaginationConfig(_Section):
    per_page: int = Field(default=100, ge=1, le=100)
    max_pages_per_topic: int = Field(default=5, ge=0, description="0 means unbounded")


class DiscoveryConfig(_Section):
    topics: List[str] = Field(
        default_factory=lambda: ["neovim-colorscheme", "nvim-theme", "vim-colorscheme"]
    )
    include_repos: List[str] = Field(default_factory=list)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)


class RateLimitConfig(_Section):
    delay_ms: int = Field(default=250, ge=0)
    retry_limit: int = Field(default=3, ge=0)


class GitHubConfig(_Section):
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class BatchConfig(_Section):
    size: int = Field(default=50, ge=0, description="0 means a single batch")
    pause_ms: int = Field(default=0, ge=0)


class ProcessingConfig(_Section):
    batch: BatchConfig = Field(default_factory=BatchConfig)
    concurrency: int = Field(default=5, ge=1)
    max_repos_per_run: int = Field(default=0, ge=0, description="0 means unbounded")


class FiltersConfig(_Section):
    min_stars: int = Field(default=0, ge=0)
    skip_archived: bool = True
    skip_disabled: bool = True
    stale_after_days: int = Field(default=14, ge=0)


class OutputConfig(_Section):
    themes: str = "artifacts/themes.json"
    manifest: str = "artifacts/manifest.json"
    cache: str = ".state/indexer.db"


class RuntimeConfig(_Section):
    scan_interval_seconds: int = Field(default=1800, ge=0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class SortConfig(_Section):
    by: Literal["stars", "updated_at", "name"] = "stars"
    order: Literal["asc", "desc"] = "desc"


class PublishGitConfig(_Section):
    remote: str = "origin"
    branch: str = "master"
    message: str = "chore(registry): publish latest index artifacts"


class PublishConfig(_Section):
    enabled: bool = False
    git: PublishGitConfig = Field(default_factory=PublishGitConfig)


class RegistryConfig(_Section):
    """Top-level configuration."""
    version: str = ""
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    filters: FiltersConfig = Field(default_factory=FiltersConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    overrides: str = "overrides.json"
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    sort: SortConfig = Field(default_factory=SortConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> RegistryConfig:
    """
    Load configuration from a JSON file, falling back to defaults.

    Args:
        path: Path to the config file

    Returns:
        Parsed RegistryConfig, or the all-defaults config when the file is
        missing, unreadable, not JSON, or fails validation
    """
    config_path = Path(path)
    if not config_path.exists():
        logger.debug(f"Config file {config_path} not found, using defaults")
        return RegistryConfig()

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
        return RegistryConfig.model_validate(raw)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Could not load config from {config_path}, using defaults: {e}")
        return RegistryConfig()
