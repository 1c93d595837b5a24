"""ArtifactResolver — the single entry point that turns a commit into a local artifact.

Data flow for one key::

    hierarchy (local, registry)  ──hit──►  done
          │ miss
          ▼
    SourceBuildPipeline ──ok──► hierarchy.store (fan out to registry) ──► done
          │ BuildError, only when raw source is allowed
          ▼
    hierarchy incl. git fallback ──► raw source snapshot written to local only

Every hit is guaranteed to exist in the local store before it is returned;
a failed local write raises ``StoreError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

from gitcache.config import GitCacheSettings, effective_max_cache_size
from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.pipeline import SourceBuildPipeline
from gitcache.core.process import ToolRunner, run_tool
from gitcache.errors import BuildError, GitCacheError, NotFoundAnywhereError
from gitcache.models.artifacts import BatchOutcome, BuildOptions, BuildRequest, ResolvedArtifact
from gitcache.models.cache import PruneResult
from gitcache.models.keys import ArtifactKey
from gitcache.tiers.hierarchy import CacheHierarchy, store_from_settings

logger = logging.getLogger(__name__)

BUILD_SOURCE = "Build"


class ArtifactResolver:
    """Facade wiring settings, local store, tier hierarchy and build pipeline.

    Parameters
    ----------
    settings:
        Process settings.
    store:
        The local store shared by the hierarchy's local tier and the pipeline.
    hierarchy:
        Ordered tiers; its first tier must wrap *store*.
    pipeline:
        Build pipeline writing into *store*.
    """

    def __init__(
        self,
        settings: GitCacheSettings,
        store: LocalArtifactStore,
        hierarchy: CacheHierarchy,
        pipeline: SourceBuildPipeline,
    ) -> None:
        self._settings = settings
        self._store = store
        self._hierarchy = hierarchy
        self._pipeline = pipeline

    @classmethod
    def from_settings(
        cls, settings: GitCacheSettings, *, runner: ToolRunner = run_tool
    ) -> ArtifactResolver:
        store = store_from_settings(settings)
        hierarchy = CacheHierarchy.from_settings(settings, store=store, runner=runner)
        pipeline = SourceBuildPipeline(store, settings=settings, runner=runner)
        return cls(settings, store, hierarchy, pipeline)

    @property
    def store(self) -> LocalArtifactStore:
        return self._store

    @property
    def hierarchy(self) -> CacheHierarchy:
        return self._hierarchy

    @property
    def pipeline(self) -> SourceBuildPipeline:
        return self._pipeline

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolved(self, key: ArtifactKey, source: str) -> ResolvedArtifact:
        metadata = self._store.get_metadata(key)
        return ResolvedArtifact(
            package_id=key.package_id,
            platform=key.platform,
            artifact_path=self._store.path_for(key),
            integrity=metadata.integrity if metadata else "",
            source=source,
        )

    def _landed(self, key: ArtifactKey, data: bytes, source: str) -> ResolvedArtifact:
        # A failed write-back into the local tier must not be reported as a hit.
        if self._store.get_metadata(key) is None:
            self._store.store(key, data)
        return self._resolved(key, source)

    def resolve(
        self,
        repo_url: str,
        commit_sha: str,
        platform: str | None = None,
        *,
        options: BuildOptions | None = None,
        allow_raw_source: bool = False,
    ) -> ResolvedArtifact:
        """Return a local artifact for the commit, fetching or building it as needed.

        Raises
        ------
        KeyNormalizationError
            If the commit is not a full SHA.
        BuildError
            If the build fails and either *allow_raw_source* is false or no
            git fallback tier is configured.
        NotFoundAnywhereError
            If the build fails and the git fallback cannot produce it either.
        StoreError
            If the artifact cannot be written to the local store.
        """
        key = ArtifactKey.create(repo_url, commit_sha, platform)
        options = options or BuildOptions()

        if not options.force:
            try:
                data, source = self._hierarchy.get_with_source(key, include_fallback=False)
            except NotFoundAnywhereError:
                logger.debug("%s not cached; building from source", key.package_id)
            else:
                logger.info("Resolved %s from %s", key.package_id, source)
                return self._landed(key, data, source)

        try:
            result = self._pipeline.build_key(key, options)
        except BuildError as exc:
            if not (allow_raw_source and self._hierarchy.has_fallback):
                raise
            logger.warning(
                "Build failed for %s (%s); falling back to raw git source", key.package_id, exc
            )
            data, source = self._hierarchy.get_with_source(key, include_fallback=True)
            return self._landed(key, data, source)

        data = result.artifact_path.read_bytes()
        outcomes = self._hierarchy.store(key, data)
        failed = [outcome.tier for outcome in outcomes if not outcome.success]
        if failed:
            logger.info("%s stored locally; not shared with %s", key.package_id, ", ".join(failed))
        return self._resolved(key, BUILD_SOURCE)

    def resolve_batch(
        self,
        requests: Iterable[BuildRequest],
        *,
        options: BuildOptions | None = None,
        allow_raw_source: bool = False,
    ) -> list[BatchOutcome]:
        """Resolve many requests concurrently; all-settled, input order preserved."""
        requests = list(requests)
        if not requests:
            return []

        def settle(request: BuildRequest) -> BatchOutcome:
            try:
                resolved = self.resolve(
                    request.repo_url,
                    request.commit_sha,
                    request.platform,
                    options=options,
                    allow_raw_source=allow_raw_source,
                )
            except BuildError as exc:
                logger.error("Failed to resolve %s: %s", request.label, exc)
                return BatchOutcome(request=request, error=str(exc), phase=exc.phase)
            except GitCacheError as exc:
                logger.error("Failed to resolve %s: %s", request.label, exc)
                return BatchOutcome(request=request, error=str(exc))
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error resolving %s", request.label)
                return BatchOutcome(request=request, error=f"{type(exc).__name__}: {exc}")
            return BatchOutcome(request=request, resolved=resolved)

        workers = max(1, min(self._settings.max_parallel_builds, len(requests)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gitcache-resolve") as pool:
            return list(pool.map(settle, requests))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def prune(self, max_size: int | str | None = None, *, dry_run: bool = False) -> PruneResult:
        """Prune the local cache to *max_size*, or to the configured default."""
        limit = max_size if max_size is not None else effective_max_cache_size(self._settings)
        return self._store.evictor.prune(limit, dry_run=dry_run)

    def close(self) -> None:
        self._hierarchy.close()
