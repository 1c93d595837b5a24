"""On-disk layout of the local tarball namespace.

    <tarballs>/<commit_sha>-<platform>/package.tgz
    <tarballs>/<commit_sha>-<platform>/metadata.json
    <tarballs>/.locks/<commit_sha>-<platform>.lock
    <tarballs>/.sequence
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

ARTIFACT_FILENAME = "package.tgz"
METADATA_FILENAME = "metadata.json"
LOCKS_DIRNAME = ".locks"
SEQUENCE_FILENAME = ".sequence"

MIN_SHA_LENGTH = 6
_HEX_RE = re.compile(r"^[0-9a-f]+$", re.IGNORECASE)


def parse_entry_name(name: str) -> tuple[str, str] | None:
    """Split ``<sha>-<platform>`` into its parts.

    The platform may itself contain dashes (``darwin-arm64``).  Returns
    ``None`` for anything that is not a plausible entry: a SHA part that is
    not hex or is shorter than six characters, or a missing platform.
    """
    sha, sep, platform = name.partition("-")
    if not sep or not platform:
        return None
    if len(sha) < MIN_SHA_LENGTH or not _HEX_RE.match(sha):
        return None
    return sha, platform


def lock_path(root: Path, directory_name: str) -> Path:
    return root / LOCKS_DIRNAME / f"{directory_name}.lock"


def discard_lock(root: Path, directory_name: str) -> None:
    """Remove the build lock file of an entry that no longer exists."""
    path = lock_path(root, directory_name)
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.debug("Could not remove lock file %s: %s", path, exc)
