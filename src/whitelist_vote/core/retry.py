"""Retry policy for transient store failures.

Every mutating engine operation runs through :class:`RetryPolicy`. Whether an
exception is retried is decided by :func:`is_transient`, an explicit type
predicate; terminal engine errors and integrity violations always propagate
on the first attempt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from whitelist_vote.core.errors import TERMINAL_ERRORS, TransientStoreError
from whitelist_vote.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return True when ``exc`` is a connection, lock or serialization failure."""
    if isinstance(exc, TransientStoreError):
        return True
    if isinstance(exc, TERMINAL_ERRORS):
        return False
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


@dataclass
class RetryPolicy:
    """Bounded exponential backoff: ``min(base * 2**(attempt-1), max)`` milliseconds."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 5000
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        )

    def delay_for(self, attempt: int) -> float:
        """Return the delay in seconds to wait after failed ``attempt`` (1-based)."""
        delay_ms = min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)
        return delay_ms / 1000.0

    def call(self, fn: Callable[[], T], *, operation: str = "operation") -> T:
        """Invoke ``fn`` until it succeeds, fails terminally or attempts run out."""
        attempts = max(1, self.max_attempts)
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if not is_transient(exc):
                    raise
                last_error = exc
                if attempt == attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed with transient error (attempt %d/%d), retrying in %.2fs: %s",
                    operation,
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
                self.sleep(delay)

        logger.error("%s gave up after %d attempts: %s", operation, attempts, last_error)
        raise TransientStoreError() from last_error
