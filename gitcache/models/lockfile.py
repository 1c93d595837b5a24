"""Lockfile scan and ref-resolution models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class GitDependency(BaseModel):
    """A git-sourced dependency discovered in a lockfile."""

    model_config = ConfigDict(frozen=True)

    name: str
    git_url: str
    reference: str = "HEAD"  # tag, branch or commit SHA
    resolved_sha: str | None = None
    integrity: str | None = None
    package_json_url: str | None = None
    lockfile_url: str | None = None
    preferred_url: str

    @property
    def transport_url(self) -> str:
        """``preferred_url`` without the npm-only ``git+`` prefix."""
        return self.preferred_url.removeprefix("git+")


class LockfileScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    dependencies: list[GitDependency]
    lockfile_version: int

    @property
    def has_git_dependencies(self) -> bool:
        return bool(self.dependencies)


class ActivityEntry(BaseModel):
    """One line of the JSON-lines activity log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    repo_url: str = Field(alias="repoUrl")
    ref: str
    sha: str
    action: str = "ref-resolved"
