"""Cache tiers and the hierarchy that orders them: local, registry, git."""

from gitcache.tiers.base import CacheStrategy
from gitcache.tiers.git import GitFallbackTier
from gitcache.tiers.hierarchy import CacheHierarchy
from gitcache.tiers.local import LocalTier
from gitcache.tiers.registry import RegistryClient, RegistryTier, TokenSource

__all__ = [
    "CacheHierarchy",
    "CacheStrategy",
    "GitFallbackTier",
    "LocalTier",
    "RegistryClient",
    "RegistryTier",
    "TokenSource",
]
