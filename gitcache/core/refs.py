"""Git ref → commit SHA resolution, plus the JSON-lines activity log.

Cache keys require a full 40-character SHA, so branch and tag references
from lockfiles are resolved with ``git ls-remote`` before building.  Every
resolution is appended to ``<home>/activity.log`` so the SHA a ref pointed
to at install time can be recovered later.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from gitcache.core.process import ToolRunner, run_tool
from gitcache.errors import RefResolutionError, ToolError
from gitcache.models.keys import COMMIT_SHA_RE
from gitcache.models.lockfile import ActivityEntry, GitDependency

logger = logging.getLogger(__name__)


class ActivityLog:
    """Append-only JSON-lines log of ref resolutions.

    Write failures are reported as warnings and never interrupt the
    operation being logged.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def record(self, repo_url: str, ref: str, sha: str) -> ActivityEntry:
        entry = ActivityEntry(repo_url=repo_url, ref=ref, sha=sha)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(entry.model_dump_json(by_alias=True) + "\n")
        except OSError as exc:
            logger.warning("Failed to write activity log %s: %s", self._path, exc)
        return entry

    def entries(self) -> list[ActivityEntry]:
        if not self._path.exists():
            return []
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.warning("Failed to read activity log %s: %s", self._path, exc)
            return []

        entries: list[ActivityEntry] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                entries.append(ActivityEntry.model_validate_json(line))
            except ValidationError:
                logger.debug("Skipping malformed activity log line: %r", line)
        return entries

    def history(self, repo_url: str) -> list[ActivityEntry]:
        return [entry for entry in self.entries() if entry.repo_url == repo_url]

    def last_resolved(self, repo_url: str, ref: str) -> str | None:
        """Most recent SHA recorded for *ref* in *repo_url*, if any."""
        matches = [e for e in self.entries() if e.repo_url == repo_url and e.ref == ref]
        if not matches:
            return None
        return max(matches, key=lambda e: e.timestamp).sha


def _ls_remote(
    repo_url: str, ref: str, *, runner: ToolRunner, timeout: float
) -> str | None:
    # HEAD is neither a head nor a tag, so the filters would hide it.
    if ref == "HEAD":
        args = ["git", "ls-remote", repo_url, "HEAD"]
    else:
        args = ["git", "ls-remote", "--heads", "--tags", repo_url, ref]
    result = runner(args, cwd=None, timeout=timeout)
    for line in (result.stdout or "").splitlines():
        if line.strip():
            return line.split("\t", 1)[0].strip()
    return None


def resolve_ref(
    repo_url: str,
    ref: str,
    *,
    runner: ToolRunner = run_tool,
    timeout: float = 120.0,
    activity_log: ActivityLog | None = None,
) -> str:
    """Resolve *ref* in *repo_url* to a full commit SHA.

    A ref that already is a full SHA is returned as-is.  A ref that matches
    no head or tag is retried once as ``HEAD``.

    Raises
    ------
    RefResolutionError
        If ``git ls-remote`` fails or yields no valid SHA.
    """
    candidate = ref.strip().lower()
    if COMMIT_SHA_RE.match(candidate):
        return candidate

    try:
        sha = _ls_remote(repo_url, ref, runner=runner, timeout=timeout)
        if sha is None and ref != "HEAD":
            logger.debug("Ref %r not found in %s; trying HEAD", ref, repo_url)
            sha = _ls_remote(repo_url, "HEAD", runner=runner, timeout=timeout)
    except ToolError as exc:
        raise RefResolutionError(f"Failed to resolve ref {ref!r} for {repo_url}: {exc}") from exc

    if sha is None:
        raise RefResolutionError(f"Reference {ref!r} not found in repository {repo_url}")
    if not COMMIT_SHA_RE.match(sha.lower()):
        raise RefResolutionError(f"Invalid commit SHA received for ref {ref!r}: {sha!r}")

    sha = sha.lower()
    if activity_log is not None:
        activity_log.record(repo_url, ref, sha)
    return sha


def resolve_git_references(
    dependencies: Iterable[GitDependency],
    *,
    runner: ToolRunner = run_tool,
    timeout: float = 120.0,
    activity_log: ActivityLog | None = None,
) -> list[GitDependency]:
    """Attach ``resolved_sha`` to each dependency.

    A dependency whose ref cannot be resolved is kept with
    ``resolved_sha=None`` and a warning; it does not fail the others.
    """
    resolved: list[GitDependency] = []
    for dep in dependencies:
        try:
            sha = resolve_ref(
                dep.transport_url,
                dep.reference,
                runner=runner,
                timeout=timeout,
                activity_log=activity_log,
            )
        except RefResolutionError as exc:
            logger.warning("Failed to resolve %s@%s: %s", dep.name, dep.reference, exc)
            resolved.append(dep.model_copy(update={"resolved_sha": None}))
            continue
        resolved.append(dep.model_copy(update={"resolved_sha": sha}))
    return resolved
