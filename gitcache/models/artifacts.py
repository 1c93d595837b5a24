"""Build artifact models: sidecar metadata, build results and batch outcomes."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from gitcache.errors import BuildPhase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PackageInfo(BaseModel):
    """Name and version discovered from the built package's manifest."""

    model_config = ConfigDict(frozen=True)

    name: str = "unknown"
    version: str = "0.0.0"


class TarballMetadata(BaseModel):
    """The ``metadata.json`` sidecar stored next to every local artifact.

    Field aliases are the on-disk JSON names, so sidecars stay readable by
    other tools that share the cache directory.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    git_url: str = Field(alias="gitUrl")
    commit_sha: str = Field(alias="commitSha")
    platform: str
    integrity: str
    build_time: datetime = Field(alias="buildTime", default_factory=_utcnow)
    package_info: PackageInfo | None = Field(alias="packageInfo", default=None)

    # Local bookkeeping
    size_bytes: int = Field(alias="sizeBytes", default=0)
    sequence: int = 0
    last_accessed: datetime | None = Field(alias="lastAccessed", default=None)
    access_count: int = Field(alias="accessCount", default=0)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class BuildOptions(BaseModel):
    """Per-invocation build switches."""

    model_config = ConfigDict(frozen=True)

    force: bool = False
    skip_install_scripts: bool = False


class BuildResult(BaseModel):
    """The outcome of manufacturing (or finding) a built artifact."""

    model_config = ConfigDict(frozen=True)

    repo_url: str
    commit_sha: str
    platform: str
    artifact_path: Path
    integrity: str
    built_at: datetime
    package_info: PackageInfo | None = None

    @classmethod
    def from_metadata(cls, metadata: TarballMetadata, artifact_path: Path) -> BuildResult:
        return cls(
            repo_url=metadata.git_url,
            commit_sha=metadata.commit_sha,
            platform=metadata.platform,
            artifact_path=artifact_path,
            integrity=metadata.integrity,
            built_at=metadata.build_time,
            package_info=metadata.package_info,
        )


class BuildRequest(BaseModel):
    """One entry of a batch build or resolve."""

    model_config = ConfigDict(frozen=True)

    repo_url: str
    commit_sha: str
    platform: str | None = None
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or f"{self.repo_url}#{self.commit_sha[:8]}"


class BatchOutcome(BaseModel):
    """All-settled result for one request in a batch.

    ``error`` is set on failure; otherwise ``result`` (a build) or
    ``resolved`` (a resolution) carries the value.
    """

    model_config = ConfigDict(frozen=True)

    request: BuildRequest
    result: BuildResult | None = None
    resolved: ResolvedArtifact | None = None
    error: str | None = None
    phase: BuildPhase | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ResolvedArtifact(BaseModel):
    """Where a resolved artifact now lives locally and which source produced it."""

    model_config = ConfigDict(frozen=True)

    package_id: str
    platform: str
    artifact_path: Path
    integrity: str
    source: str


BatchOutcome.model_rebuild()
