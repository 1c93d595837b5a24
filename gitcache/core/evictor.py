"""LRU size-bound pruning of the local tarball namespace.

Entries are ranked by an *effective LRU timestamp*: the artifact's access
time, except where the filesystem evidently does not update access times
(atime still equal to birth time), in which case modification time is used.
Some Windows configurations disable atime updates for performance; the rule
lives in ``lru_timestamp`` so it can be tested without touching an OS.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from gitcache.core.layout import (
    ARTIFACT_FILENAME,
    METADATA_FILENAME,
    discard_lock,
    parse_entry_name,
)
from gitcache.core.sizes import coerce_size, format_bytes
from gitcache.errors import PruneIOError
from gitcache.models.cache import CacheEntry, PruneResult

logger = logging.getLogger(__name__)

FROZEN_ATIME_TOLERANCE = 1.0  # seconds


def lru_timestamp(
    atime: float,
    mtime: float,
    birthtime: float | None,
    *,
    tolerance: float = FROZEN_ATIME_TOLERANCE,
) -> float:
    """Return the timestamp used to rank an entry for eviction.

    If *birthtime* is known and *atime* sits within *tolerance* seconds of
    it, access-time tracking is treated as frozen and *mtime* is returned.
    """
    if birthtime is not None and abs(atime - birthtime) < tolerance:
        return mtime
    return atime


class Evictor:
    """Scans the tarball namespace and deletes least-recently-used entries.

    Parameters
    ----------
    root:
        The ``tarballs`` directory.
    detect_frozen_atime:
        Apply the frozen-atime fallback when the platform reports birth
        times.  Defaults to ``True`` on Windows only.
    """

    def __init__(self, root: Path, *, detect_frozen_atime: bool | None = None) -> None:
        self._root = Path(root)
        self._detect_frozen_atime = (
            os.name == "nt" if detect_frozen_atime is None else detect_frozen_atime
        )

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _effective_timestamp(self, st: os.stat_result) -> float:
        birthtime = getattr(st, "st_birthtime", None) if self._detect_frozen_atime else None
        return lru_timestamp(st.st_atime, st.st_mtime, birthtime)

    @staticmethod
    def _read_sequence(entry_dir: Path) -> int:
        try:
            data = json.loads((entry_dir / METADATA_FILENAME).read_text(encoding="utf-8"))
            return int(data.get("sequence", 0))
        except (OSError, ValueError, TypeError, AttributeError):
            return 0

    def scan(self) -> list[CacheEntry]:
        """Return all valid entries, oldest effective access first."""
        if not self._root.is_dir():
            return []

        try:
            children = list(self._root.iterdir())
        except OSError as exc:
            logger.warning("Could not read cache directory %s: %s", self._root, exc)
            return []

        entries: list[CacheEntry] = []
        for child in children:
            parsed = parse_entry_name(child.name)
            if parsed is None:
                continue
            commit_sha, platform = parsed
            artifact = child / ARTIFACT_FILENAME
            try:
                if not child.is_dir() or not artifact.is_file():
                    continue
                st = artifact.stat()
            except OSError:
                # Removed concurrently or unreadable; not our concern here.
                continue

            entries.append(
                CacheEntry(
                    path=child,
                    size_bytes=st.st_size,
                    last_access_time=datetime.fromtimestamp(
                        self._effective_timestamp(st), tz=timezone.utc
                    ),
                    commit_sha=commit_sha,
                    platform=platform,
                    sequence=self._read_sequence(child),
                )
            )

        entries.sort(key=lambda e: (e.last_access_time, e.sequence))
        return entries

    def total_size(self) -> int:
        return sum(entry.size_bytes for entry in self.scan())

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def prune(self, max_size: int | str, *, dry_run: bool = False) -> PruneResult:
        """Delete oldest entries until the namespace fits within *max_size*.

        ``dry_run`` performs the same selection and reports it without
        deleting anything.  A failed delete is logged and skipped; it never
        aborts the remaining deletions.
        """
        max_size_bytes = coerce_size(max_size)
        entries = self.scan()
        total = sum(entry.size_bytes for entry in entries)

        if total <= max_size_bytes:
            logger.debug(
                "Cache size %s within limit %s; nothing to evict",
                format_bytes(total),
                format_bytes(max_size_bytes),
            )
            return PruneResult(
                total_size=total,
                entries_scanned=len(entries),
                max_size_bytes=max_size_bytes,
                was_within_limit=True,
                dry_run=dry_run,
            )

        selected: list[CacheEntry] = []
        running = total
        for entry in entries:
            if running <= max_size_bytes:
                break
            selected.append(entry)
            running -= entry.size_bytes

        if dry_run:
            return PruneResult(
                total_size=total,
                entries_scanned=len(entries),
                entries_deleted=len(selected),
                space_freed=sum(entry.size_bytes for entry in selected),
                max_size_bytes=max_size_bytes,
                was_within_limit=False,
                dry_run=True,
                deleted_paths=[entry.path for entry in selected],
            )

        deleted: list[Path] = []
        failed: list[Path] = []
        freed = 0
        for entry in selected:
            try:
                shutil.rmtree(entry.path)
            except OSError as exc:
                error = PruneIOError(f"Failed to delete cache entry {entry.path}: {exc}")
                logger.warning("%s", error)
                failed.append(entry.path)
                continue
            deleted.append(entry.path)
            discard_lock(self._root, entry.path.name)
            freed += entry.size_bytes
            logger.debug(
                "Evicted %s-%s (%s)",
                entry.commit_sha[:8],
                entry.platform,
                format_bytes(entry.size_bytes),
            )

        logger.info(
            "Pruned %d entries, freed %s (limit %s)",
            len(deleted),
            format_bytes(freed),
            format_bytes(max_size_bytes),
        )
        return PruneResult(
            total_size=total,
            entries_scanned=len(entries),
            entries_deleted=len(deleted),
            space_freed=freed,
            max_size_bytes=max_size_bytes,
            was_within_limit=False,
            deleted_paths=deleted,
            failed_paths=failed,
        )
