"""The ``CacheStrategy`` protocol every tier satisfies.

The hierarchy dispatches only through this interface, so tiers can be added
or replaced (including with test doubles) without touching it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from gitcache.models.cache import TierStatus
from gitcache.models.keys import ArtifactKey


@runtime_checkable
class CacheStrategy(Protocol):
    """One storage tier addressed by ``ArtifactKey``.

    Attributes
    ----------
    name:
        Display name, also reported as the ``source`` of a resolved artifact.
    authoritative:
        A failed ``store`` on this tier fails the whole hierarchy store.
    read_only:
        The tier can produce bytes but never accepts writes (git fallback).
    """

    name: str
    authoritative: bool
    read_only: bool

    def has(self, key: ArtifactKey) -> bool:
        """Cheap presence check.  Must not raise for a plain miss."""
        ...

    def get(self, key: ArtifactKey) -> bytes:
        """Return the bytes for *key*; raises ``NotFoundError`` on a miss."""
        ...

    def store(self, key: ArtifactKey, data: bytes) -> None:
        """Persist *data*; raises ``StoreError`` on failure."""
        ...

    def status(self) -> TierStatus:
        ...

    def clear(self) -> None:
        ...
