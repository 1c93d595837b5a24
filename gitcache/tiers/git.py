"""Git fallback tier — produces a raw source snapshot straight from the repository.

This tier always claims to have a key (any reachable commit can be
archived), never accepts writes, and returns ``git archive`` output rather
than a packed artifact.
"""

from __future__ import annotations

import logging
import shutil

from gitcache.core.fsutil import scratch_workspace
from gitcache.core.process import ToolRunner, run_tool
from gitcache.errors import NotFoundError, ToolError
from gitcache.models.cache import TierStatus
from gitcache.models.keys import ArtifactKey

logger = logging.getLogger(__name__)


class GitFallbackTier:
    name = "Git"
    authoritative = False
    read_only = True

    def __init__(self, *, timeout: float = 120.0, runner: ToolRunner = run_tool) -> None:
        self._timeout = timeout
        self._runner = runner

    def has(self, key: ArtifactKey) -> bool:
        return True

    def get(self, key: ArtifactKey) -> bytes:
        """Shallow-clone, fetch the commit if needed, and return a tar archive of it.

        Raises
        ------
        NotFoundError
            If any git step fails.
        """
        url = key.transport_url
        sha = key.commit_sha
        logger.debug("Fetching %s via git", key.package_id)

        with scratch_workspace(prefix="gitcache-git-") as workspace:
            repo_dir = workspace / "repo"
            try:
                self._git(["clone", "--depth=1", url, str(repo_dir)])
                if not self._commit_available(repo_dir, sha):
                    logger.debug("Fetching commit %s from origin", sha)
                    self._git(["fetch", "origin", sha], repo_dir)
                self._git(["checkout", "--detach", sha], repo_dir)
                result = self._runner(
                    ["git", "archive", "--format=tar", sha],
                    cwd=repo_dir,
                    timeout=self._timeout,
                    binary=True,
                )
            except ToolError as exc:
                raise NotFoundError(f"Git fetch failed for {key.package_id}: {exc}") from exc

        logger.debug("Fetched %s via git (%d bytes)", key.package_id, len(result.stdout))
        return result.stdout

    def _git(self, args: list[str], cwd=None) -> None:
        self._runner(["git", *args], cwd=cwd, timeout=self._timeout)

    def _commit_available(self, repo_dir, sha: str) -> bool:
        try:
            self._git(["cat-file", "-e", f"{sha}^{{commit}}"], repo_dir)
        except ToolError:
            return False
        return True

    def store(self, key: ArtifactKey, data: bytes) -> None:
        logger.debug("Store not supported for git tier (%s)", key.package_id)

    def status(self) -> TierStatus:
        available = shutil.which("git") is not None
        return TierStatus(
            tier=self.name,
            available=available,
            detail="" if available else "git executable not found on PATH",
        )

    def clear(self) -> None:
        pass
