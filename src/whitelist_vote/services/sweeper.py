"""Expiration sweeper.

Periodically closes voting applications whose deadline has passed. Each
application is settled in its own transaction through the engine, so a failure
on one item never blocks the rest of the pass, and concurrent sweepers (or a
vote racing the sweeper) resolve an application exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from whitelist_vote.core.errors import EngineError
from whitelist_vote.core.settings import settings
from whitelist_vote.db.session import SessionLocal
from whitelist_vote.db.time import utcnow
from whitelist_vote.services.applications import list_expired_voting_ids
from whitelist_vote.services.engine import VotingEngine, get_voting_engine

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What a single sweep pass did."""

    examined: int = 0
    resolved: dict[int, str] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class ExpirationSweeper:
    """Resolves overdue applications once per interval in the background."""

    def __init__(
        self,
        engine: VotingEngine | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        interval_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine or get_voting_engine()
        self.session_factory = session_factory
        self.interval_seconds = (
            settings.sweep_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    def sweep_once(self, now: datetime | None = None) -> SweepReport:
        """Settle every application whose deadline is at or before ``now``."""
        now = now or self.clock()
        report = SweepReport()

        with self.session_factory() as db:
            candidates = list_expired_voting_ids(db, now)
        report.examined = len(candidates)

        for application_id in candidates:
            with self.session_factory() as db:
                try:
                    outcome = self.engine.settle_expired(db, application_id, now=now)
                except EngineError as exc:
                    db.rollback()
                    logger.error(
                        "Sweeper could not settle application %s: %s",
                        application_id,
                        exc,
                        exc_info=True,
                    )
                    report.failed[application_id] = exc.code
                    continue
                except Exception as exc:
                    db.rollback()
                    logger.error(
                        "Unexpected error settling application %s",
                        application_id,
                        exc_info=True,
                    )
                    report.failed[application_id] = type(exc).__name__
                    continue

                if outcome is None or not outcome.changed:
                    report.skipped.append(application_id)
                    continue
                report.resolved[application_id] = outcome.result.status.value
                report.warnings.extend(outcome.warnings)

        if candidates:
            logger.info(
                "Sweep finished: %d examined, %d resolved, %d skipped, %d failed",
                report.examined,
                len(report.resolved),
                len(report.skipped),
                len(report.failed),
            )
        return report

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(0.1, float(self.interval_seconds))

        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.sweep_once)
            except EngineError as exc:
                logger.warning("Expiration sweep failed: %s", exc)
            except Exception:
                logger.error("Expiration sweep crashed", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
