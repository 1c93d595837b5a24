"""Filesystem primitives: atomic commit, scratch workspaces, per-key locks.

Every artifact and sidecar write goes through the same two-step commit:
write under a temporary name in the destination directory, then rename into
place.  A concurrent reader sees either the old file or the new one, never a
partial write.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import stat
import tempfile
import time
import uuid
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType
from typing import IO

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "gitcache-build-"


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* via a same-directory temp file and ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def atomic_move(source: Path, destination: Path) -> None:
    """Move *source* into place at *destination* without exposing a partial file.

    The file is first moved (possibly across devices) to a temporary name
    beside the destination, then renamed over it.
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    staging = destination.parent / f".{destination.name}.{uuid.uuid4().hex}.tmp"
    try:
        shutil.move(str(source), str(staging))
        os.replace(staging, destination)
    except BaseException:
        with contextlib.suppress(OSError):
            staging.unlink()
        raise


# ---------------------------------------------------------------------------
# Scratch workspaces
# ---------------------------------------------------------------------------


def remove_tree(path: Path) -> None:
    """Remove a directory tree, clearing read-only bits (git object files) if needed."""
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
        return
    except OSError:
        pass
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            with contextlib.suppress(OSError):
                os.chmod(os.path.join(root, name), stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)
    try:
        shutil.rmtree(path)
    except OSError as exc:
        logger.warning("Failed to clean up workspace %s: %s", path, exc)


@contextlib.contextmanager
def scratch_workspace(prefix: str = WORKSPACE_PREFIX) -> Iterator[Path]:
    """Yield a process-private, uniquely named directory; always removed on exit."""
    path = Path(tempfile.mkdtemp(prefix=prefix))
    logger.debug("Allocated workspace %s", path)
    try:
        yield path
    finally:
        remove_tree(path)
        logger.debug("Removed workspace %s", path)


# ---------------------------------------------------------------------------
# Per-key advisory lock
# ---------------------------------------------------------------------------


def _lock_handle(handle: IO[bytes]) -> None:
    if os.name == "nt":
        import msvcrt

        while True:
            try:
                msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
                return
            except OSError:
                time.sleep(0.1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_handle(handle: IO[bytes]) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class KeyLock:
    """Host-wide advisory lock serialising builds of one artifact key.

    Parameters
    ----------
    lock_path:
        Lock file location, typically ``<tarballs>/.locks/<sha>-<platform>.lock``.
    enabled:
        When ``False`` the lock is a no-op and concurrent builders race,
        last writer wins.
    """

    def __init__(self, lock_path: Path, *, enabled: bool = True) -> None:
        self._path = Path(lock_path)
        self._enabled = enabled
        self._handle: IO[bytes] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> None:
        if not self._enabled or self._handle is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle = self._path.open("a+b")
        try:
            _lock_handle(handle)
        except BaseException:
            handle.close()
            raise
        self._handle = handle
        logger.debug("Acquired build lock %s", self._path)

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            _unlock_handle(self._handle)
        finally:
            self._handle.close()
            self._handle = None
            logger.debug("Released build lock %s", self._path)

    def __enter__(self) -> KeyLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
