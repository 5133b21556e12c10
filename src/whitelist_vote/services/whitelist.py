"""Whitelist Sync client.

The engine hands approved and ejected players to an external roster
service through the :class:`WhitelistSync` contract. Calls happen after the core
transaction has committed; a failure raises :class:`ExternalServiceError`, which
the engine reports as a warning instead of undoing the decision. The roster
service is expected to treat ``add`` and ``remove`` as idempotent so that it can
be re-driven by an operator or a retry queue.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

import httpx

from whitelist_vote.core.errors import ExternalServiceError
from whitelist_vote.core.settings import settings

logger = logging.getLogger(__name__)

HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_NOT_FOUND = 404


class WhitelistSync(Protocol):
    def add(self, nickname: str, identity_key: str | None) -> bool: ...

    def remove(self, nickname: str, identity_key: str | None) -> bool: ...


@dataclass(frozen=True)
class WhitelistConfig:
    """Immutable configuration for the roster service."""

    enabled: bool
    base_url: str | None
    token: str | None
    timeout_seconds: float


def load_whitelist_config() -> WhitelistConfig:
    """Build configuration object from global settings."""
    return WhitelistConfig(
        enabled=bool(settings.whitelist_sync_enabled and settings.whitelist_sync_base_url),
        base_url=settings.whitelist_sync_base_url,
        token=settings.whitelist_sync_token,
        timeout_seconds=float(settings.whitelist_sync_timeout_seconds),
    )


class DisabledWhitelistSync:
    """Stand-in used when no roster service is configured; only logs."""

    def add(self, nickname: str, identity_key: str | None) -> bool:
        logger.info("Whitelist sync disabled; would add %s (%s)", nickname, identity_key)
        return False

    def remove(self, nickname: str, identity_key: str | None) -> bool:
        logger.info("Whitelist sync disabled; would remove %s (%s)", nickname, identity_key)
        return False


class HttpWhitelistSync:
    """HTTP client for the roster service.

    ``POST /whitelist`` adds a player, ``DELETE /whitelist/{nickname}`` removes
    one. A 404 on removal means the player was not listed and counts as done.
    """

    def __init__(
        self,
        config: WhitelistConfig | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or load_whitelist_config()
        self._transport = transport
        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.base_url)

    def _ensure_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                headers = {}
                if self.config.token:
                    headers["Authorization"] = f"Bearer {self.config.token}"
                self._client = httpx.Client(
                    base_url=self.config.base_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers=headers,
                    transport=self._transport,
                )
        return self._client

    def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        client = self._ensure_client()
        try:
            response = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Whitelist service request failed: {exc}") from exc
        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise ExternalServiceError(
                f"Whitelist service responded with {response.status_code}"
            )
        return response

    def add(self, nickname: str, identity_key: str | None) -> bool:
        response = self._request(
            "POST",
            "/whitelist",
            json={"nickname": nickname, "uuid": identity_key},
        )
        if response.is_error:
            raise ExternalServiceError(
                f"Whitelist service refused to add {nickname} ({response.status_code})"
            )
        logger.info("Added %s to the whitelist", nickname)
        return True

    def remove(self, nickname: str, identity_key: str | None) -> bool:
        params = {"uuid": identity_key} if identity_key else None
        response = self._request("DELETE", f"/whitelist/{nickname}", params=params)
        if response.status_code == HTTP_NOT_FOUND:
            logger.info("%s was not on the whitelist", nickname)
            return False
        if response.is_error:
            raise ExternalServiceError(
                f"Whitelist service refused to remove {nickname} ({response.status_code})"
            )
        logger.info("Removed %s from the whitelist", nickname)
        return True

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None


class _WhitelistSyncSingleton:
    _instance: WhitelistSync | None = None

    @classmethod
    def get_instance(cls) -> WhitelistSync:
        if cls._instance is None:
            client = HttpWhitelistSync()
            cls._instance = client if client.enabled else DisabledWhitelistSync()
        return cls._instance


def get_whitelist_sync() -> WhitelistSync:
    """Return the process-wide Whitelist Sync client."""
    return _WhitelistSyncSingleton.get_instance()
