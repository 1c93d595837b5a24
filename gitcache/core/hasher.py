"""Content hashing helpers for artifact digests.

Integrity strings use the Subresource Integrity form (``sha256-<base64>``)
that npm lockfiles use, so a recorded digest can be compared directly with
a lockfile's ``integrity`` field.
"""

from __future__ import annotations

import base64
import hashlib
from pathlib import Path

CHUNK_SIZE = 65536
INTEGRITY_ALGORITHM = "sha256"


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def _to_integrity(digest: bytes) -> str:
    return f"{INTEGRITY_ALGORITHM}-{base64.b64encode(digest).decode('ascii')}"


def integrity_of(data: bytes) -> str:
    """SRI integrity string for in-memory bytes."""
    return _to_integrity(hashlib.sha256(data).digest())


def integrity_of_file(path: Path) -> str:
    """SRI integrity string for a file, read in chunks."""
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            h.update(chunk)
    return _to_integrity(h.digest())


def verify_integrity(data: bytes, integrity: str) -> bool:
    """Check bytes fetched from any tier against a recorded integrity string."""
    return integrity_of(data) == integrity
