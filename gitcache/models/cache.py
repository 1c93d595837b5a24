"""Cache bookkeeping models: local entries, prune reports, tier status."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """One ``<sha>-<platform>`` directory in the local tarball namespace.

    ``last_access_time`` is the effective LRU timestamp (access time, or
    modification time where access time is known to be frozen).
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    size_bytes: int
    last_access_time: datetime
    commit_sha: str
    platform: str
    sequence: int = 0


class PruneResult(BaseModel):
    """Report of one prune pass (or of what a dry run would do)."""

    model_config = ConfigDict(frozen=True)

    total_size: int
    entries_scanned: int
    entries_deleted: int = 0
    space_freed: int = 0
    max_size_bytes: int
    was_within_limit: bool
    dry_run: bool = False
    deleted_paths: list[Path] = Field(default_factory=list)
    failed_paths: list[Path] = Field(default_factory=list)

    @property
    def remaining_size(self) -> int:
        return self.total_size - self.space_freed


class TierStatus(BaseModel):
    """Availability of one tier in the hierarchy."""

    model_config = ConfigDict(frozen=True)

    tier: str
    available: bool
    authenticated: bool | None = None
    detail: str = ""


class StoreOutcome(BaseModel):
    """Per-tier result of a hierarchy ``store`` fan-out."""

    model_config = ConfigDict(frozen=True)

    tier: str
    success: bool
    error: str | None = None
