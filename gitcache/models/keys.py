"""Artifact keys — stable identity for one (repository, commit, platform) build.

Normalisation canonicalises protocol-equivalent spellings of the same
repository (``.git`` suffix, trailing slashes, ``git+`` prefixes, ``github:``
shorthand, scp-style ssh) while keeping ssh and https distinct, since they
may resolve to different auth contexts.
"""

from __future__ import annotations

import hashlib
import platform as _platform
import re
import sys

from pydantic import BaseModel, ConfigDict, field_validator

from gitcache.errors import KeyNormalizationError

COMMIT_SHA_RE = re.compile(r"^[0-9a-f]{40}$")

# git@host:path (scp-like ssh syntax); requires an explicit user.
_SCP_LIKE_RE = re.compile(r"^(?P<user>[^@/:\s]+)@(?P<host>[^@/:\s]+):(?P<path>[^/].*)$")

_HOST_SHORTHANDS: dict[str, str] = {
    "github:": "https://github.com/",
    "gitlab:": "https://gitlab.com/",
    "bitbucket:": "https://bitbucket.org/",
}

_ARCH_NAMES: dict[str, str] = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
    "armv7l": "arm",
    "armv6l": "arm",
}


def current_platform() -> str:
    """Return the ``<os>-<arch>`` identifier of the running interpreter.

    Uses Node-style names (``linux-x64``, ``darwin-arm64``, ``win32-x64``)
    because the packed artifacts are consumed by npm.
    """
    os_name = sys.platform
    if os_name.startswith("linux"):
        os_name = "linux"
    machine = _platform.machine().lower()
    arch = _ARCH_NAMES.get(machine, machine or "unknown")
    return f"{os_name}-{arch}"


def _normalize_once(url: str) -> str:
    url = url.strip().lower()
    url = url.split("#", 1)[0].split("?", 1)[0]

    if url.startswith("github:"):
        url = "https://github.com/" + url[len("github:"):]

    if url.startswith("git+ssh://"):
        url = "ssh://" + url[len("git+ssh://"):]
    elif url.startswith("git+https://"):
        url = "https://" + url[len("git+https://"):]
    elif "://" not in url:
        match = _SCP_LIKE_RE.match(url)
        if match:
            url = f"ssh://{match['user']}@{match['host']}/{match['path']}"

    url = url.rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url.rstrip("/")


def normalize_repo_url(url: str) -> str:
    """Canonicalise a repository URL for use in a cache key.

    Never raises: input that does not look like a URL is trimmed on a
    best-effort basis, since a conservative cache miss is preferable to
    blocking on key derivation.  The rules are applied until they reach a
    fixed point, which makes the function idempotent.
    """
    previous = None
    current = url
    while current != previous:
        previous = current
        current = _normalize_once(current)
    return current


def clean_clone_url(url: str) -> str:
    """Strip key-only decorations from a URL while preserving case for git."""
    url = url.strip().split("#", 1)[0]
    for shorthand, base in _HOST_SHORTHANDS.items():
        if url.startswith(shorthand):
            path = url[len(shorthand):].rstrip("/")
            return f"{base}{path}" if path.endswith(".git") else f"{base}{path}.git"
    if url.startswith("git+"):
        url = url[len("git+"):]
    return url


class ArtifactKey(BaseModel):
    """Normalised (repository, commit, platform) triple.

    Equality and hashing consider ``repo_url``, ``commit_sha`` and
    ``platform`` only; ``clone_url`` is the transport URL handed to git and
    does not participate in identity.
    """

    model_config = ConfigDict(frozen=True)

    repo_url: str
    commit_sha: str
    platform: str
    clone_url: str = ""

    @field_validator("commit_sha")
    @classmethod
    def _check_sha(cls, value: str) -> str:
        value = value.strip().lower()
        if not COMMIT_SHA_RE.match(value):
            raise ValueError(f"commit SHA must be 40 hex characters, got {value!r}")
        return value

    @classmethod
    def create(
        cls,
        repo_url: str,
        commit_sha: str,
        platform: str | None = None,
    ) -> ArtifactKey:
        """Build a key from raw caller input.

        Raises ``KeyNormalizationError`` for a commit that is not a full
        40-character SHA (short refs must be resolved upstream) or for an
        unusable platform string.
        """
        sha = (commit_sha or "").strip().lower()
        if not COMMIT_SHA_RE.match(sha):
            raise KeyNormalizationError(
                f"Expected a full 40-character commit SHA, got {commit_sha!r}"
            )
        plat = (platform or current_platform()).strip()
        if not plat or any(sep in plat for sep in ("/", "\\", "#")):
            raise KeyNormalizationError(f"Invalid platform identifier: {platform!r}")
        return cls(
            repo_url=normalize_repo_url(repo_url),
            commit_sha=sha,
            platform=plat,
            clone_url=clean_clone_url(repo_url),
        )

    @classmethod
    def from_package_id(cls, package_id: str, platform: str | None = None) -> ArtifactKey:
        """Parse the ``<url>#<sha>`` key string form."""
        repo_url, sep, sha = package_id.rpartition("#")
        if not sep or not repo_url.strip():
            raise KeyNormalizationError(f"Invalid package ID format: {package_id!r}")
        return cls.create(repo_url, sha, platform)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.repo_url, self.commit_sha, self.platform)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactKey):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    # ------------------------------------------------------------------
    # Derived forms
    # ------------------------------------------------------------------

    @property
    def package_id(self) -> str:
        """Key string form used across tiers and in logs: ``<url>#<sha>``."""
        return f"{self.repo_url}#{self.commit_sha}"

    @property
    def canonical(self) -> str:
        return f"{self.package_id}@{self.platform}"

    @property
    def storage_id(self) -> str:
        """SHA-256 of the canonical form; the identifier used by remote tiers."""
        return hashlib.sha256(self.canonical.encode("utf-8")).hexdigest()

    @property
    def directory_name(self) -> str:
        """Human-browsable local identifier: ``<sha>-<platform>``."""
        return f"{self.commit_sha}-{self.platform}"

    @property
    def transport_url(self) -> str:
        """URL to hand to git: the caller's spelling when known."""
        return self.clone_url or self.repo_url

    def __str__(self) -> str:
        return self.canonical
