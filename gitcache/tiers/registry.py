"""Shared registry tier — an opaque HTTP key/value service for built artifacts.

Wire protocol (all requests carry ``Authorization: Bearer <token>``)::

    HEAD /artifacts/{id}/exists         2xx means present
    GET  /artifacts/{id}                artifact bytes
    POST /artifacts/{id}/upload-url     {"size", "sha256"} -> {"uploadUrl"}
    PUT  <uploadUrl>                    artifact bytes

``{id}`` is ``ArtifactKey.storage_id``.  A 413 or 429 during upload means the
organisation's quota is exhausted; the upload is skipped, not failed.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gitcache.core.hasher import sha256_hex
from gitcache.errors import NotFoundError, RegistryError, StoreError
from gitcache.models.cache import TierStatus
from gitcache.models.keys import ArtifactKey

logger = logging.getLogger(__name__)

CI_TOKEN_PREFIX = "ci_"
QUOTA_STATUS_CODES = frozenset({413, 429})


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class AuthData(BaseModel):
    """Contents of ``<home>/auth.json``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str
    org_id: str = Field(default="", alias="orgId")
    token_type: str = Field(default="user", alias="tokenType")
    expires_at: int | None = Field(default=None, alias="expiresAt")  # epoch ms
    email: str | None = None


class TokenSource:
    """Supplies the bearer token for registry requests.

    Parameters
    ----------
    env_token:
        Token from settings (``GITCACHE_TOKEN``).  A ``ci_`` token is always
        treated as authenticated.
    auth_path:
        Path to ``auth.json`` written by a prior login.
    clock:
        Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self,
        env_token: str = "",
        auth_path: Path | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._env_token = env_token
        self._auth_path = auth_path
        self._clock = clock

    def _load_auth(self) -> AuthData | None:
        if self._auth_path is None or not self._auth_path.exists():
            return None
        try:
            return AuthData.model_validate(json.loads(self._auth_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as exc:
            logger.debug("Ignoring unreadable auth file %s: %s", self._auth_path, exc)
            return None

    def _usable_auth(self) -> AuthData | None:
        auth = self._load_auth()
        if auth is None or not auth.token:
            return None
        if auth.token_type == "user" and auth.expires_at is not None:
            if self._clock() * 1000 > auth.expires_at:
                logger.debug("Stored user token expired")
                return None
        return auth

    def token(self) -> str | None:
        if self._env_token.startswith(CI_TOKEN_PREFIX):
            return self._env_token
        auth = self._usable_auth()
        return auth.token if auth else None

    def is_authenticated(self) -> bool:
        return self.token() is not None

    def token_type(self) -> str | None:
        if self._env_token.startswith(CI_TOKEN_PREFIX):
            return "ci"
        auth = self._usable_auth()
        return auth.token_type if auth else None


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class RegistryClient:
    """Thin httpx wrapper over the registry API.

    Transport failures raise ``RegistryError``; a non-2xx download raises
    ``NotFoundError``.  The client owns an ``httpx.Client`` and should be
    closed (or used as a context manager).
    """

    def __init__(
        self,
        api_url: str,
        tokens: TokenSource,
        *,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._tokens = tokens
        self._client = httpx.Client(base_url=self._api_url, timeout=timeout, transport=transport)

    @property
    def api_url(self) -> str:
        return self._api_url

    def _auth_headers(self) -> dict[str, str]:
        token = self._tokens.token()
        if not token:
            raise RegistryError("No authentication token available")
        return {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        try:
            return self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise RegistryError(f"Registry request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise RegistryError(f"Registry request failed: {method} {path}: {exc}") from exc

    def has(self, artifact_id: str) -> bool:
        response = self._request("HEAD", f"/artifacts/{artifact_id}/exists")
        return response.is_success

    def get(self, artifact_id: str) -> bytes:
        response = self._request("GET", f"/artifacts/{artifact_id}")
        if not response.is_success:
            raise NotFoundError(
                f"Registry returned {response.status_code} for artifact {artifact_id}"
            )
        return response.content

    def upload(self, artifact_id: str, data: bytes) -> bool:
        """Upload *data*; returns ``False`` when skipped for quota reasons."""
        response = self._request(
            "POST",
            f"/artifacts/{artifact_id}/upload-url",
            json={"size": len(data), "sha256": sha256_hex(data)},
        )
        if response.status_code in QUOTA_STATUS_CODES:
            logger.info("Upload of %s skipped: quota exceeded", artifact_id)
            return False
        if not response.is_success:
            raise RegistryError(f"Failed to get upload URL: HTTP {response.status_code}")

        try:
            upload_url = response.json()["uploadUrl"]
        except (ValueError, KeyError, TypeError) as exc:
            raise RegistryError("Registry returned a malformed upload-url response") from exc

        # Pre-signed storage URL; no bearer token.
        try:
            put = self._client.put(
                upload_url,
                content=data,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.HTTPError as exc:
            raise RegistryError(f"Upload of {artifact_id} failed: {exc}") from exc

        if put.status_code in QUOTA_STATUS_CODES:
            logger.info("Upload of %s skipped: quota exceeded", artifact_id)
            return False
        if not put.is_success:
            raise RegistryError(f"Upload of {artifact_id} failed: HTTP {put.status_code}")

        logger.debug("Uploaded %s (%d bytes)", artifact_id, len(data))
        return True

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Tier
# ---------------------------------------------------------------------------


class RegistryTier:
    """``CacheStrategy`` over the shared registry.

    When no usable token is available the tier behaves as permanently
    empty: ``has`` is ``False``, ``get`` misses and uploads are skipped.
    """

    name = "Registry"
    authoritative = False
    read_only = False

    def __init__(self, client: RegistryClient, tokens: TokenSource) -> None:
        self._client = client
        self._tokens = tokens

    def has(self, key: ArtifactKey) -> bool:
        if not self._tokens.is_authenticated():
            return False
        try:
            return self._client.has(key.storage_id)
        except RegistryError as exc:
            logger.debug("Registry check failed for %s: %s", key.package_id, exc)
            return False

    def get(self, key: ArtifactKey) -> bytes:
        if not self._tokens.is_authenticated():
            raise NotFoundError("Registry access requires authentication")
        return self._client.get(key.storage_id)

    def store(self, key: ArtifactKey, data: bytes) -> None:
        if not self._tokens.is_authenticated():
            logger.debug("Upload of %s skipped: not authenticated", key.package_id)
            return
        try:
            self._client.upload(key.storage_id, data)
        except RegistryError as exc:
            raise StoreError(f"Registry upload failed for {key.package_id}: {exc}") from exc

    def status(self) -> TierStatus:
        return TierStatus(
            tier=self.name,
            available=True,
            authenticated=self._tokens.is_authenticated(),
            detail=self._client.api_url,
        )

    def clear(self) -> None:
        logger.debug("Registry tier is not cleared locally")

    def close(self) -> None:
        self._client.close()
