"""Notifier client: best-effort delivery of lifecycle events to users."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from enum import Enum
from typing import Any, Protocol

import httpx

from whitelist_vote.core.errors import ExternalServiceError
from whitelist_vote.core.settings import settings

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    APPLICATION_SUBMITTED = "application_submitted"
    VOTING_STARTED = "voting_started"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_EXPIRED = "application_expired"
    USER_EJECTED = "user_ejected"
    REPUTATION_AMNESTY = "reputation_amnesty"
    QUESTION_ASKED = "question_asked"
    QUESTION_ANSWERED = "question_answered"


class Notifier(Protocol):
    def notify(self, user_id: int, kind: EventKind, payload: Mapping[str, Any]) -> None: ...


class LoggingNotifier:
    """Notifier that only writes events to the log."""

    def notify(self, user_id: int, kind: EventKind, payload: Mapping[str, Any]) -> None:
        logger.info("Notify user %s: %s %s", user_id, kind.value, dict(payload))


class WebhookNotifier:
    """POSTs every event as JSON to a single webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = (
            settings.notifier_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport
        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    def _ensure_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def notify(self, user_id: int, kind: EventKind, payload: Mapping[str, Any]) -> None:
        body = {"user_id": user_id, "event": kind.value, "payload": dict(payload)}
        try:
            response = self._ensure_client().post(self.url, json=body)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Notification delivery failed: {exc}") from exc
        if response.is_error:
            raise ExternalServiceError(
                f"Notification webhook responded with {response.status_code}"
            )

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None


class _NotifierSingleton:
    _instance: Notifier | None = None

    @classmethod
    def get_instance(cls) -> Notifier:
        if cls._instance is None:
            if settings.notifier_webhook_url:
                cls._instance = WebhookNotifier(settings.notifier_webhook_url)
            else:
                cls._instance = LoggingNotifier()
        return cls._instance


def get_notifier() -> Notifier:
    """Return the process-wide notifier."""
    return _NotifierSingleton.get_instance()
