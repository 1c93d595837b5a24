"""SourceBuildPipeline — manufactures a packed artifact from a git commit.

Phases, in order::

    checkout   git clone --depth 1, unshallow if the commit is missing, detach at SHA
    install    npm ci, falling back to npm install; then the prepare script
    pack       npm pack
    digest     SRI integrity of the archive, then an atomic move into the store

Every phase runs inside a scratch workspace that is removed on all exit
paths, and every external process has a bounded timeout.  Builds of the same
key on one host are serialised by ``KeyLock``; a caller that waited on the
lock re-checks the store and returns the artifact the holder produced.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gitcache.config import GitCacheSettings
from gitcache.core.fsutil import KeyLock, scratch_workspace
from gitcache.core.hasher import integrity_of_file
from gitcache.core.layout import lock_path
from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.process import ToolRunner, run_tool
from gitcache.errors import BuildError, BuildPhase, GitCacheError, ToolError
from gitcache.models.artifacts import (
    BatchOutcome,
    BuildOptions,
    BuildRequest,
    BuildResult,
    PackageInfo,
)
from gitcache.models.keys import ArtifactKey

logger = logging.getLogger(__name__)

REPO_DIRNAME = "repo"


def read_manifest(repo_dir: Path) -> dict[str, Any] | None:
    """Parse ``package.json``; ``None`` when it is missing or not a JSON object."""
    try:
        data = json.loads((repo_dir / "package.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def package_info_from(manifest: dict[str, Any] | None) -> PackageInfo | None:
    if manifest is None:
        return None
    return PackageInfo(
        name=str(manifest.get("name") or "unknown"),
        version=str(manifest.get("version") or "0.0.0"),
    )


def has_prepare_script(manifest: dict[str, Any] | None) -> bool:
    scripts = (manifest or {}).get("scripts")
    return isinstance(scripts, dict) and bool(scripts.get("prepare"))


class SourceBuildPipeline:
    """Clone, install and pack one commit into the local store.

    Parameters
    ----------
    store:
        Destination for finished artifacts; also consulted for the
        short-circuit when an artifact already exists.
    settings:
        Timeouts, npm executable, parallelism and the build-lock switch.
    runner:
        External tool runner.  Tests substitute a fake here.
    """

    def __init__(
        self,
        store: LocalArtifactStore,
        *,
        settings: GitCacheSettings | None = None,
        runner: ToolRunner = run_tool,
    ) -> None:
        self._store = store
        self._settings = settings or GitCacheSettings()
        self._runner = runner

    @property
    def store(self) -> LocalArtifactStore:
        return self._store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_cached(self, key: ArtifactKey) -> BuildResult | None:
        """Return the stored build for *key*, or ``None`` if there is none."""
        metadata = self._store.get_metadata(key)
        if metadata is None:
            return None
        return BuildResult.from_metadata(metadata, self._store.path_for(key))

    def build(
        self,
        repo_url: str,
        commit_sha: str,
        platform: str | None = None,
        options: BuildOptions | None = None,
    ) -> BuildResult:
        """Build (or reuse) the artifact for one commit.

        Raises
        ------
        KeyNormalizationError
            If the commit is not a full SHA.
        BuildError
            If a phase fails; ``error.phase`` names it.
        StoreError
            If the finished artifact cannot be written to the local store.
        """
        key = ArtifactKey.create(repo_url, commit_sha, platform)
        return self.build_key(key, options)

    def build_key(self, key: ArtifactKey, options: BuildOptions | None = None) -> BuildResult:
        options = options or BuildOptions()

        if not options.force:
            cached = self.get_cached(key)
            if cached is not None:
                logger.debug("Using cached build for %s", key.package_id)
                return cached

        lock = KeyLock(
            lock_path(self._store.root, key.directory_name),
            enabled=self._settings.build_lock,
        )
        with lock:
            if not options.force:
                cached = self.get_cached(key)
                if cached is not None:
                    logger.info("%s was built while waiting for the build lock", key.package_id)
                    return cached

            logger.info("Building %s for %s", key.package_id, key.platform)
            with scratch_workspace() as workspace:
                return self._build_in(workspace, key, options)

    def build_batch(
        self,
        requests: Iterable[BuildRequest],
        options: BuildOptions | None = None,
    ) -> list[BatchOutcome]:
        """Build many commits concurrently; one outcome per request, in order.

        The join is all-settled: a failed build is reported in its outcome
        and never cancels the others.
        """
        requests = list(requests)
        if not requests:
            return []

        workers = max(1, min(self._settings.max_parallel_builds, len(requests)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gitcache-build") as pool:
            futures = [pool.submit(self._settle, request, options) for request in requests]
            outcomes = [future.result() for future in futures]

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        if failed:
            logger.warning("%d/%d builds failed", failed, len(outcomes))
        return outcomes

    def _settle(self, request: BuildRequest, options: BuildOptions | None) -> BatchOutcome:
        try:
            result = self.build(request.repo_url, request.commit_sha, request.platform, options)
        except BuildError as exc:
            logger.error("Build failed for %s: %s", request.label, exc)
            return BatchOutcome(request=request, error=str(exc), phase=exc.phase)
        except GitCacheError as exc:
            logger.error("Build failed for %s: %s", request.label, exc)
            return BatchOutcome(request=request, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error building %s", request.label)
            return BatchOutcome(request=request, error=f"{type(exc).__name__}: {exc}")
        return BatchOutcome(request=request, result=result)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _build_in(self, workspace: Path, key: ArtifactKey, options: BuildOptions) -> BuildResult:
        repo_dir = workspace / REPO_DIRNAME
        self._checkout(key, repo_dir)

        manifest = read_manifest(repo_dir)
        if manifest is None:
            logger.debug("No readable package.json in %s", key.package_id)

        self._install(repo_dir, options)
        if not options.skip_install_scripts and has_prepare_script(manifest):
            self._prepare(repo_dir)

        archive = self._pack(repo_dir)

        try:
            integrity = integrity_of_file(archive)
        except OSError as exc:
            raise BuildError(BuildPhase.DIGEST, f"Could not read {archive.name}: {exc}") from exc

        metadata = self._store.store_file(
            key,
            archive,
            package_info=package_info_from(manifest),
            integrity=integrity,
            built_at=datetime.now(timezone.utc),
        )
        logger.info("Built %s (%s)", key.package_id, integrity)
        return BuildResult.from_metadata(metadata, self._store.path_for(key))

    def _run(self, args: list[str], *, cwd: Path | None, timeout: float):
        return self._runner(args, cwd=cwd, timeout=timeout)

    def _checkout(self, key: ArtifactKey, repo_dir: Path) -> None:
        timeout = self._settings.git_timeout
        url = key.transport_url
        try:
            self._run(["git", "clone", "--depth", "1", url, str(repo_dir)], cwd=None, timeout=timeout)
        except ToolError as exc:
            raise BuildError.from_tool_error(BuildPhase.CHECKOUT, f"Failed to clone {url}", exc) from exc

        try:
            self._run(["git", "cat-file", "-e", f"{key.commit_sha}^{{commit}}"], cwd=repo_dir, timeout=timeout)
        except ToolError:
            logger.debug("Commit %s not in shallow clone; fetching full history", key.commit_sha)
            try:
                self._run(["git", "fetch", "--unshallow"], cwd=repo_dir, timeout=timeout)
            except ToolError as exc:
                raise BuildError.from_tool_error(
                    BuildPhase.CHECKOUT, f"Failed to fetch history of {url}", exc
                ) from exc

        try:
            self._run(["git", "checkout", "--detach", key.commit_sha], cwd=repo_dir, timeout=timeout)
        except ToolError as exc:
            raise BuildError.from_tool_error(
                BuildPhase.CHECKOUT, f"Commit {key.commit_sha} not found in {url}", exc
            ) from exc

    def _install(self, repo_dir: Path, options: BuildOptions) -> None:
        npm = self._settings.npm_command
        timeout = self._settings.build_timeout
        flags = ["--ignore-scripts"] if options.skip_install_scripts else []

        try:
            self._run([npm, "ci", *flags], cwd=repo_dir, timeout=timeout)
            return
        except ToolError as exc:
            logger.info("npm ci failed (%s); falling back to npm install", exc)

        try:
            self._run([npm, "install", *flags], cwd=repo_dir, timeout=timeout)
        except ToolError as exc:
            raise BuildError.from_tool_error(
                BuildPhase.INSTALL, "Both npm ci and npm install failed", exc
            ) from exc

    def _prepare(self, repo_dir: Path) -> None:
        try:
            self._run(
                [self._settings.npm_command, "run", "prepare"],
                cwd=repo_dir,
                timeout=self._settings.build_timeout,
            )
        except ToolError as exc:
            raise BuildError.from_tool_error(BuildPhase.INSTALL, "prepare script failed", exc) from exc

    def _pack(self, repo_dir: Path) -> Path:
        try:
            result = self._run(
                [self._settings.npm_command, "pack"],
                cwd=repo_dir,
                timeout=self._settings.build_timeout,
            )
        except ToolError as exc:
            raise BuildError.from_tool_error(BuildPhase.PACK, "npm pack failed", exc) from exc

        lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if not lines:
            raise BuildError(BuildPhase.PACK, "npm pack did not report an archive name")

        archive = repo_dir / lines[-1]
        if not archive.is_file():
            raise BuildError(BuildPhase.PACK, f"npm pack did not create {lines[-1]}")
        return archive
