"""Local on-disk artifact store — the authoritative tier.

Storage layout: ``{root}/{commit_sha}-{platform}/package.tgz`` plus a
``metadata.json`` sidecar.  An entry exists only when *both* files exist and
the sidecar parses and names the same commit and platform; a partial pair is
a cache miss, never a corrupt-but-present hit.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from gitcache.core.evictor import Evictor
from gitcache.core.fsutil import atomic_move, atomic_write_bytes, atomic_write_text
from gitcache.core.hasher import integrity_of, integrity_of_file, verify_integrity
from gitcache.core.layout import (
    ARTIFACT_FILENAME,
    LOCKS_DIRNAME,
    METADATA_FILENAME,
    SEQUENCE_FILENAME,
    discard_lock,
    parse_entry_name,
)
from gitcache.errors import NotFoundError, StoreError
from gitcache.models.artifacts import PackageInfo, TarballMetadata
from gitcache.models.cache import CacheEntry
from gitcache.models.keys import ArtifactKey

logger = logging.getLogger(__name__)


class LocalArtifactStore:
    """Content-addressed store of built artifacts keyed by ``ArtifactKey``.

    Parameters
    ----------
    root:
        The ``tarballs`` directory.  Created lazily on first write.
    max_size_bytes:
        Optional ceiling.  When set, the namespace is pruned to this size
        before every write.
    evictor:
        Evictor over the same root; one is created if omitted.
    """

    def __init__(
        self,
        root: Path,
        *,
        max_size_bytes: int | None = None,
        evictor: Evictor | None = None,
    ) -> None:
        self._root = Path(root)
        self._max_size_bytes = max_size_bytes
        self._evictor = evictor or Evictor(self._root)
        self._sequence_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def evictor(self) -> Evictor:
        return self._evictor

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def entry_dir(self, key: ArtifactKey) -> Path:
        return self._root / key.directory_name

    def path_for(self, key: ArtifactKey) -> Path:
        return self.entry_dir(key) / ARTIFACT_FILENAME

    def metadata_path(self, key: ArtifactKey) -> Path:
        return self.entry_dir(key) / METADATA_FILENAME

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_metadata(self, key: ArtifactKey) -> TarballMetadata | None:
        """Return the sidecar for a consistent entry, else ``None``.  Read-only."""
        try:
            metadata = TarballMetadata.model_validate_json(
                self.metadata_path(key).read_text(encoding="utf-8")
            )
        except (OSError, ValueError, ValidationError):
            return None
        if metadata.commit_sha.lower() != key.commit_sha or metadata.platform != key.platform:
            return None
        if not self.path_for(key).is_file():
            return None
        return metadata

    def has(self, key: ArtifactKey) -> bool:
        """Check presence without touching access bookkeeping."""
        return self.get_metadata(key) is not None

    def get(self, key: ArtifactKey) -> bytes:
        """Read an artifact and record the access.

        Raises
        ------
        NotFoundError
            If the entry is absent, its artifact/sidecar pair is inconsistent,
            or the artifact no longer matches its recorded integrity.  A
            corrupt entry is removed so the next lookup can repopulate it.
        """
        metadata = self.get_metadata(key)
        if metadata is None:
            raise NotFoundError(f"{key.package_id} ({key.platform}) is not in the local cache")
        try:
            data = self.path_for(key).read_bytes()
        except OSError as exc:
            raise NotFoundError(f"Failed to read {key.package_id} from local cache: {exc}") from exc
        if not verify_integrity(data, metadata.integrity):
            logger.warning("Integrity mismatch for %s in local cache; removing entry", key.package_id)
            self.remove(key)
            raise NotFoundError(f"{key.package_id} failed integrity verification")
        self._record_access(key, metadata)
        return data

    def _record_access(self, key: ArtifactKey, metadata: TarballMetadata) -> None:
        now = datetime.now(timezone.utc)
        artifact = self.path_for(key)
        try:
            st = artifact.stat()
            os.utime(artifact, (now.timestamp(), st.st_mtime))
            updated = metadata.model_copy(
                update={"last_accessed": now, "access_count": metadata.access_count + 1}
            )
            atomic_write_text(self.metadata_path(key), updated.to_json())
        except OSError as exc:
            # Access bookkeeping is best-effort; the read itself succeeded.
            logger.debug("Could not record access for %s: %s", key.package_id, exc)

    def list_entries(self) -> list[CacheEntry]:
        return self._evictor.scan()

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def store(
        self,
        key: ArtifactKey,
        data: bytes,
        *,
        package_info: PackageInfo | None = None,
        integrity: str | None = None,
        built_at: datetime | None = None,
    ) -> TarballMetadata:
        """Atomically write an artifact and its sidecar.

        Storing content whose digest matches the existing entry is a no-op
        that returns the existing metadata.

        Raises
        ------
        StoreError
            On any filesystem failure.
        """
        integrity = integrity or integrity_of(data)
        existing = self._unchanged(key, integrity, package_info)
        if existing is not None:
            return existing

        try:
            self._evict_before_write()
            atomic_write_bytes(self.path_for(key), data)
            metadata = self._commit_metadata(key, integrity, len(data), package_info, built_at)
        except OSError as exc:
            raise StoreError(f"Failed to store {key.package_id} in local cache: {exc}") from exc

        logger.debug("Stored %s (%d bytes) in local cache", key.package_id, len(data))
        return metadata

    def store_file(
        self,
        key: ArtifactKey,
        source: Path,
        *,
        package_info: PackageInfo | None = None,
        integrity: str | None = None,
        built_at: datetime | None = None,
    ) -> TarballMetadata:
        """Move a finished archive into the store (the file is consumed)."""
        source = Path(source)
        try:
            integrity = integrity or integrity_of_file(source)
            size = source.stat().st_size
            existing = self._unchanged(key, integrity, package_info)
            if existing is not None:
                source.unlink()
                return existing
            self._evict_before_write()
            atomic_move(source, self.path_for(key))
            metadata = self._commit_metadata(key, integrity, size, package_info, built_at)
        except OSError as exc:
            raise StoreError(f"Failed to store {key.package_id} in local cache: {exc}") from exc

        logger.debug("Moved %s (%d bytes) into local cache", key.package_id, size)
        return metadata

    def _unchanged(
        self, key: ArtifactKey, integrity: str, package_info: PackageInfo | None
    ) -> TarballMetadata | None:
        existing = self.get_metadata(key)
        if existing is None or existing.integrity != integrity:
            return None
        if package_info is not None and existing.package_info != package_info:
            return None
        logger.debug("%s already stored with identical content", key.package_id)
        return existing

    def _commit_metadata(
        self,
        key: ArtifactKey,
        integrity: str,
        size: int,
        package_info: PackageInfo | None,
        built_at: datetime | None,
    ) -> TarballMetadata:
        metadata = TarballMetadata(
            git_url=key.repo_url,
            commit_sha=key.commit_sha,
            platform=key.platform,
            integrity=integrity,
            build_time=built_at or datetime.now(timezone.utc),
            package_info=package_info,
            size_bytes=size,
            sequence=self._next_sequence(),
        )
        atomic_write_text(self.metadata_path(key), metadata.to_json())
        return metadata

    def _next_sequence(self) -> int:
        """Monotonic insertion counter used as the initial access-order baseline."""
        path = self._root / SEQUENCE_FILENAME
        with self._sequence_lock:
            try:
                current = int(path.read_text(encoding="utf-8").strip() or 0)
            except (OSError, ValueError):
                current = 0
            current += 1
            atomic_write_text(path, str(current))
            return current

    def _evict_before_write(self) -> None:
        if self._max_size_bytes is not None:
            self._evictor.prune(self._max_size_bytes)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, key: ArtifactKey) -> bool:
        """Delete one entry.  Returns ``False`` if it was not present."""
        entry = self.entry_dir(key)
        try:
            shutil.rmtree(entry)
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Failed to remove %s from local cache: %s", key.package_id, exc)
            return False
        discard_lock(self._root, key.directory_name)
        logger.debug("Removed %s from local cache", key.package_id)
        return True

    def clear(self) -> None:
        """Delete every entry in the namespace.

        Raises
        ------
        StoreError
            If any entry could not be removed.
        """
        if not self._root.is_dir():
            return
        failures: list[str] = []
        for child in self._root.iterdir():
            if parse_entry_name(child.name) is None or not child.is_dir():
                continue
            try:
                shutil.rmtree(child)
            except OSError as exc:
                failures.append(f"{child.name}: {exc}")
        for lock in (self._root / LOCKS_DIRNAME).glob("*.lock"):
            discard_lock(self._root, lock.stem)
        if failures:
            raise StoreError("Failed to clear local cache: " + "; ".join(failures))
        logger.info("Cleared local cache at %s", self._root)
