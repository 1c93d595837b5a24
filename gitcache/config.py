"""Runtime configuration — env-driven settings plus the persisted user config.

``GitCacheSettings`` reads ``GITCACHE_*`` environment variables (or a
``.env`` file).  It is constructed once at process start and passed to each
component explicitly; components never read the environment themselves.

Examples
--------
Override via environment::

    export GITCACHE_HOME=/var/cache/gitcache
    export GITCACHE_VERBOSE=true
    export GITCACHE_TOKEN=ci_myorg_abc123

The default cache ceiling lives in a small JSON file
(``<home>/.gitcache-config.json``) so that ``gitcache prune --set-default``
survives between runs.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from gitcache.core.fsutil import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_SIZE = "5GB"
CONFIG_FILENAME = ".gitcache-config.json"


class GitCacheSettings(BaseSettings):
    """Process-wide settings with ``GITCACHE_*`` environment overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GITCACHE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    home: Path = Field(default_factory=lambda: Path.home() / ".gitcache")

    # Logging
    verbose: bool = False
    log_level: str = "INFO"

    # Shared registry tier
    api_url: str = "https://api.grata-labs.com"
    token: str = ""
    registry_timeout: float = 5.0
    enable_registry: bool = True

    # Git fallback tier
    enable_git_fallback: bool = True

    # Build pipeline
    git_timeout: float = 120.0
    build_timeout: float = 600.0
    max_parallel_builds: int = 4
    npm_command: str = "npm"
    build_lock: bool = True

    # Per-process override of the persisted cache ceiling, e.g. "2GB"
    max_cache_size: str | None = None

    @property
    def tarballs_dir(self) -> Path:
        return self.home / "tarballs"

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_FILENAME

    @property
    def auth_path(self) -> Path:
        return self.home / "auth.json"

    @property
    def activity_log_path(self) -> Path:
        return self.home / "activity.log"

    @property
    def mirrors_dir(self) -> Path:
        return self.home / "mirrors"


class UserConfig(BaseModel):
    """Persisted user preferences."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_cache_size: str = Field(default=DEFAULT_MAX_CACHE_SIZE, alias="maxCacheSize")


def load_user_config(path: Path) -> UserConfig:
    """Load the persisted config, creating it with defaults if missing.

    An unreadable or invalid file is reported and defaults are returned;
    a broken preferences file must never block an install.
    """
    if not path.exists():
        config = UserConfig()
        save_user_config(path, config)
        return config

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return UserConfig.model_validate(data)
    except (OSError, ValueError, ValidationError) as exc:
        logger.warning("Failed to load config file %s, using defaults: %s", path, exc)
        return UserConfig()


def save_user_config(path: Path, config: UserConfig) -> None:
    try:
        atomic_write_text(path, config.model_dump_json(by_alias=True, indent=2))
    except OSError as exc:
        logger.warning("Failed to save config file %s: %s", path, exc)


def set_default_max_cache_size(path: Path, max_size: str) -> UserConfig:
    """Persist a new default ceiling and return the updated config."""
    config = load_user_config(path).model_copy(update={"max_cache_size": max_size})
    save_user_config(path, config)
    return config


def effective_max_cache_size(settings: GitCacheSettings, override: str | None = None) -> str:
    """Resolve the cache ceiling: invocation override > settings > persisted default."""
    if override:
        return override
    if settings.max_cache_size:
        return settings.max_cache_size
    return load_user_config(settings.config_path).max_cache_size
