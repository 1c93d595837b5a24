"""CacheHierarchy — ordered tier resolution with write-back propagation.

Tiers are queried strictly in order (local, registry, git).  The first tier
that reports a key and returns its bytes wins, and those bytes are copied
into every higher-priority writable tier so the next lookup is served closer
to home.  Raw snapshots from a read-only fallback tier are copied into the
authoritative tier only, so unbuilt source never reaches a shared tier.
Any tier failure other than an authoritative write degrades to the next
tier.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from gitcache.config import GitCacheSettings, effective_max_cache_size
from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.process import ToolRunner, run_tool
from gitcache.core.sizes import parse_size_to_bytes
from gitcache.errors import GitCacheError, NotFoundAnywhereError, StoreError
from gitcache.models.cache import StoreOutcome, TierStatus
from gitcache.models.keys import ArtifactKey
from gitcache.tiers.base import CacheStrategy
from gitcache.tiers.git import GitFallbackTier
from gitcache.tiers.local import LocalTier
from gitcache.tiers.registry import RegistryClient, RegistryTier, TokenSource

logger = logging.getLogger(__name__)


def store_from_settings(settings: GitCacheSettings) -> LocalArtifactStore:
    """Local store with the configured write-time size ceiling."""
    try:
        max_bytes: int | None = parse_size_to_bytes(effective_max_cache_size(settings))
    except ValueError as exc:
        logger.warning("Ignoring invalid cache size limit: %s", exc)
        max_bytes = None
    return LocalArtifactStore(settings.tarballs_dir, max_size_bytes=max_bytes)


class CacheHierarchy:
    """Ordered collection of ``CacheStrategy`` tiers.

    Parameters
    ----------
    tiers:
        Tiers in priority order, highest first.
    """

    def __init__(self, tiers: Sequence[CacheStrategy]) -> None:
        if not tiers:
            raise ValueError("CacheHierarchy requires at least one tier")
        for tier in tiers:
            if not isinstance(tier, CacheStrategy):
                raise TypeError(f"{tier!r} does not satisfy the CacheStrategy protocol")
        self._tiers: list[CacheStrategy] = list(tiers)

    @classmethod
    def from_settings(
        cls,
        settings: GitCacheSettings,
        *,
        store: LocalArtifactStore | None = None,
        runner: ToolRunner = run_tool,
    ) -> CacheHierarchy:
        """Build the standard local → registry → git order from settings."""
        tiers: list[CacheStrategy] = [LocalTier(store or store_from_settings(settings))]
        if settings.enable_registry:
            tokens = TokenSource(settings.token, settings.auth_path)
            client = RegistryClient(settings.api_url, tokens, timeout=settings.registry_timeout)
            tiers.append(RegistryTier(client, tokens))
        if settings.enable_git_fallback:
            tiers.append(GitFallbackTier(timeout=settings.git_timeout, runner=runner))
        return cls(tiers)

    @property
    def tiers(self) -> list[CacheStrategy]:
        return list(self._tiers)

    @property
    def has_fallback(self) -> bool:
        return any(tier.read_only for tier in self._tiers)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def has(self, key: ArtifactKey, *, include_fallback: bool = True) -> bool:
        for tier in self._candidates(include_fallback):
            try:
                if tier.has(key):
                    logger.debug("Found %s in %s", key.package_id, tier.name)
                    return True
            except GitCacheError as exc:
                logger.debug("Failed to check %s for %s: %s", tier.name, key.package_id, exc)
        return False

    def get(self, key: ArtifactKey, *, include_fallback: bool = True) -> bytes:
        data, _ = self.get_with_source(key, include_fallback=include_fallback)
        return data

    def get_with_source(
        self, key: ArtifactKey, *, include_fallback: bool = True
    ) -> tuple[bytes, str]:
        """Return the bytes for *key* and the name of the tier that produced them.

        Raises
        ------
        NotFoundAnywhereError
            If no tier could produce the key.
        """
        for index, tier in enumerate(self._tiers):
            if tier.read_only and not include_fallback:
                continue
            try:
                if not tier.has(key):
                    logger.debug("Miss for %s in %s", key.package_id, tier.name)
                    continue
                data = tier.get(key)
            except GitCacheError as exc:
                logger.debug("Failed to get %s from %s: %s", key.package_id, tier.name, exc)
                continue

            logger.debug("Hit for %s in %s", key.package_id, tier.name)
            self._propagate(key, data, self._tiers[:index], raw=tier.read_only)
            return data, tier.name

        raise NotFoundAnywhereError(f"Package {key.package_id} not found in any cache")

    def _candidates(self, include_fallback: bool) -> list[CacheStrategy]:
        return [t for t in self._tiers if include_fallback or not t.read_only]

    def _propagate(
        self, key: ArtifactKey, data: bytes, higher: list[CacheStrategy], *, raw: bool = False
    ) -> None:
        for tier in higher:
            if tier.read_only:
                continue
            if raw and not tier.authoritative:
                logger.debug("Not sharing raw snapshot of %s with %s", key.package_id, tier.name)
                continue
            try:
                tier.store(key, data)
                logger.debug("Propagated %s to %s", key.package_id, tier.name)
            except GitCacheError as exc:
                logger.warning("Failed to propagate %s to %s: %s", key.package_id, tier.name, exc)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, key: ArtifactKey, data: bytes) -> list[StoreOutcome]:
        """Write *data* to every writable tier independently.

        Raises
        ------
        StoreError
            If an authoritative tier's write failed.  Other tiers' failures
            are reported in the returned outcomes only.
        """
        outcomes: list[StoreOutcome] = []
        authoritative_failures: list[str] = []

        for tier in self._tiers:
            if tier.read_only:
                continue
            try:
                tier.store(key, data)
            except GitCacheError as exc:
                logger.warning("Failed to store %s in %s: %s", key.package_id, tier.name, exc)
                outcomes.append(StoreOutcome(tier=tier.name, success=False, error=str(exc)))
                if tier.authoritative:
                    authoritative_failures.append(f"{tier.name}: {exc}")
                continue
            logger.debug("Stored %s in %s", key.package_id, tier.name)
            outcomes.append(StoreOutcome(tier=tier.name, success=True))

        if authoritative_failures:
            raise StoreError(
                f"Failed to store {key.package_id}: " + "; ".join(authoritative_failures)
            )
        return outcomes

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def status(self) -> list[TierStatus]:
        statuses: list[TierStatus] = []
        for tier in self._tiers:
            try:
                statuses.append(tier.status())
            except GitCacheError as exc:
                statuses.append(TierStatus(tier=tier.name, available=False, detail=str(exc)))
        return statuses

    def clear(self) -> None:
        for tier in self._tiers:
            try:
                tier.clear()
                logger.debug("Cleared %s", tier.name)
            except GitCacheError as exc:
                logger.warning("Failed to clear %s: %s", tier.name, exc)

    def close(self) -> None:
        for tier in self._tiers:
            close = getattr(tier, "close", None)
            if callable(close):
                close()
