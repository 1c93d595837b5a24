"""Local filesystem tier backed by ``LocalArtifactStore``."""

from __future__ import annotations

from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.sizes import format_bytes
from gitcache.models.cache import TierStatus
from gitcache.models.keys import ArtifactKey


class LocalTier:
    name = "Local Cache"
    authoritative = True
    read_only = False

    def __init__(self, store: LocalArtifactStore) -> None:
        self._store = store

    @property
    def store_backend(self) -> LocalArtifactStore:
        return self._store

    def has(self, key: ArtifactKey) -> bool:
        return self._store.has(key)

    def get(self, key: ArtifactKey) -> bytes:
        return self._store.get(key)

    def store(self, key: ArtifactKey, data: bytes) -> None:
        self._store.store(key, data)

    def status(self) -> TierStatus:
        entries = self._store.list_entries()
        size = sum(entry.size_bytes for entry in entries)
        return TierStatus(
            tier=self.name,
            available=True,
            detail=f"{len(entries)} entries, {format_bytes(size)}",
        )

    def clear(self) -> None:
        self._store.clear()
