"""gitcache data models — all Pydantic v2, all frozen (immutable)."""

from gitcache.models.artifacts import (
    BatchOutcome,
    BuildOptions,
    BuildRequest,
    BuildResult,
    PackageInfo,
    ResolvedArtifact,
    TarballMetadata,
)
from gitcache.models.cache import CacheEntry, PruneResult, StoreOutcome, TierStatus
from gitcache.models.keys import (
    ArtifactKey,
    clean_clone_url,
    current_platform,
    normalize_repo_url,
)
from gitcache.models.lockfile import ActivityEntry, GitDependency, LockfileScanResult

__all__ = [
    # keys
    "ArtifactKey",
    "normalize_repo_url",
    "clean_clone_url",
    "current_platform",
    # artifacts
    "PackageInfo",
    "TarballMetadata",
    "BuildOptions",
    "BuildResult",
    "BuildRequest",
    "BatchOutcome",
    "ResolvedArtifact",
    # cache
    "CacheEntry",
    "PruneResult",
    "TierStatus",
    "StoreOutcome",
    # lockfile
    "GitDependency",
    "LockfileScanResult",
    "ActivityEntry",
]
