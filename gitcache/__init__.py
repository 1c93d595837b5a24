"""gitcache: a content-addressed, tiered cache for git dependencies.

Each (repository, commit, platform) triple is cloned, installed and packed
at most once; the resulting archive is reused from the local cache or a shared
registry, and a raw git snapshot is served when a build fails.
"""

__version__ = "0.2.0"

from gitcache.config import GitCacheSettings
from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.pipeline import SourceBuildPipeline
from gitcache.core.resolver import ArtifactResolver
from gitcache.models.keys import ArtifactKey
from gitcache.tiers.hierarchy import CacheHierarchy

__all__ = [
    "ArtifactKey",
    "ArtifactResolver",
    "CacheHierarchy",
    "GitCacheSettings",
    "LocalArtifactStore",
    "SourceBuildPipeline",
    "__version__",
]
