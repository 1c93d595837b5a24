"""Shared test fixtures for gitcache."""

from __future__ import annotations

import json
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from gitcache.config import GitCacheSettings
from gitcache.core.local_store import LocalArtifactStore
from gitcache.errors import NotFoundError, StoreError, ToolError
from gitcache.models.cache import TierStatus
from gitcache.models.keys import ArtifactKey

REPO_URL = "https://github.com/acme/widget.git"
PLATFORM = "linux-x64"


def sha_of(char: str) -> str:
    """A valid 40-hex commit SHA made of one repeated character."""
    return char * 40


# ---------------------------------------------------------------------------
# Fake external tool runner
# ---------------------------------------------------------------------------


class FakeRunner:
    """Stands in for ``run_tool``: simulates git and npm in the given cwd.

    ``failures`` maps a command prefix (``"npm ci"``, ``"git clone"``) to the
    number of times it should fail before succeeding; ``-1`` fails forever.
    """

    def __init__(
        self,
        *,
        manifest: dict[str, Any] | None = None,
        pack_content: bytes = b"packed-artifact",
        archive_content: bytes = b"raw-tar-snapshot",
        ls_remote: dict[str, str] | None = None,
        write_manifest: bool = True,
    ) -> None:
        self.manifest = manifest if manifest is not None else {"name": "widget", "version": "1.2.3"}
        self.pack_content = pack_content
        self.archive_content = archive_content
        self.ls_remote = ls_remote or {}
        self.write_manifest = write_manifest
        self.failures: dict[str, int] = {}
        self.calls: list[list[str]] = []
        self.cwds: list[Path | None] = []

    def fail(self, prefix: str, times: int = -1) -> None:
        self.failures[prefix] = times

    def commands(self) -> list[str]:
        return [" ".join(call[:2]) for call in self.calls]

    def _maybe_fail(self, args: list[str]) -> None:
        joined = " ".join(args)
        for prefix, remaining in self.failures.items():
            if joined.startswith(prefix) and remaining != 0:
                if remaining > 0:
                    self.failures[prefix] = remaining - 1
                raise ToolError(args, exit_code=1, stderr=f"{prefix} failed")

    def __call__(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        timeout: float,
        binary: bool = False,
    ) -> subprocess.CompletedProcess:
        self.calls.append(list(args))
        self.cwds.append(cwd)
        self._maybe_fail(args)

        stdout: str | bytes = b"" if binary else ""
        command = " ".join(args[:2])
        if command == "git clone":
            dest = Path(args[-1])
            dest.mkdir(parents=True)
            if self.write_manifest:
                (dest / "package.json").write_text(json.dumps(self.manifest))
        elif command == "npm pack":
            name = f"{self.manifest.get('name', 'pkg')}-{self.manifest.get('version', '0.0.0')}.tgz"
            (Path(cwd) / name).write_bytes(self.pack_content)
            stdout = f"npm notice packing\n{name}\n"
        elif command == "git archive":
            stdout = self.archive_content
        elif command == "git ls-remote":
            ref = args[-1]
            sha = self.ls_remote.get(ref)
            stdout = f"{sha}\trefs/heads/{ref}\n" if sha else ""
        return subprocess.CompletedProcess(args, 0, stdout=stdout, stderr="")


# ---------------------------------------------------------------------------
# In-memory cache tier
# ---------------------------------------------------------------------------


class MemoryTier:
    """In-memory tier with switchable failure modes."""

    def __init__(
        self,
        name: str,
        *,
        authoritative: bool = False,
        read_only: bool = False,
        fail_get: bool = False,
        fail_store: bool = False,
    ) -> None:
        self.name = name
        self.authoritative = authoritative
        self.read_only = read_only
        self.fail_get = fail_get
        self.fail_store = fail_store
        self.data: dict[ArtifactKey, bytes] = {}
        self.has_calls = 0
        self.cleared = False

    def has(self, key: ArtifactKey) -> bool:
        self.has_calls += 1
        return key in self.data

    def get(self, key: ArtifactKey) -> bytes:
        if self.fail_get:
            raise NotFoundError(f"{self.name} read failed")
        return self.data[key]

    def store(self, key: ArtifactKey, data: bytes) -> None:
        if self.fail_store:
            raise StoreError(f"{self.name} write failed")
        self.data[key] = data

    def status(self) -> TierStatus:
        return TierStatus(tier=self.name, available=True)

    def clear(self) -> None:
        self.cleared = True
        self.data.clear()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def settings(tmp_dir: Path) -> GitCacheSettings:
    """Settings rooted in a temp home with the network tier disabled."""
    return GitCacheSettings(
        home=tmp_dir / "home",
        enable_registry=False,
        git_timeout=5.0,
        build_timeout=5.0,
        max_parallel_builds=4,
        max_cache_size=None,
    )


@pytest.fixture
def store(settings: GitCacheSettings) -> LocalArtifactStore:
    """Provide a fresh LocalArtifactStore in the temp home."""
    return LocalArtifactStore(settings.tarballs_dir)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_key() -> Callable[..., ArtifactKey]:
    """Factory fixture: build an ArtifactKey with sensible defaults."""

    def _factory(
        char: str = "a",
        platform: str = PLATFORM,
        repo_url: str = REPO_URL,
    ) -> ArtifactKey:
        return ArtifactKey.create(repo_url, sha_of(char), platform)

    return _factory
