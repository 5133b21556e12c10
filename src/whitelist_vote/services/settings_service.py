"""Access to the singleton ``system_settings`` row.

Reads are served from a short-lived in-process cache. Callers that must not act
on a stale view (the expiration sweeper) ask for ``fresh=True``. The cache only
ever holds immutable snapshots, never ORM instances bound to a session.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whitelist_vote.core.errors import TransientStoreError
from whitelist_vote.core.settings import settings
from whitelist_vote.models import SystemSettings
from whitelist_vote.models.system import SYSTEM_SETTINGS_ID
from whitelist_vote.services.resolver import VotingThresholds

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60
HOURS_PER_DAY = 24

PERCENT_FIELDS = frozenset(
    {
        "min_participation_percent",
        "approval_threshold_percent",
        "rejection_threshold_percent",
        "negative_ratings_threshold",
    }
)
COUNT_FIELDS = frozenset({"min_votes_required", "rating_cooldown_minutes", "max_daily_ratings"})


@dataclass(frozen=True)
class SettingsSnapshot:
    """Immutable copy of the settings row."""

    voting_duration_days: int
    voting_duration_hours: int
    voting_duration_minutes: int
    min_votes_required: int
    min_participation_percent: float
    approval_threshold_percent: float
    rejection_threshold_percent: float
    negative_ratings_threshold: float
    rating_cooldown_minutes: int
    max_daily_ratings: int

    @classmethod
    def from_row(cls, row: SystemSettings) -> SettingsSnapshot:
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    @property
    def voting_window(self) -> timedelta:
        return timedelta(
            days=self.voting_duration_days,
            hours=self.voting_duration_hours,
            minutes=self.voting_duration_minutes,
        )

    @property
    def thresholds(self) -> VotingThresholds:
        return VotingThresholds.from_settings(self)


def normalize_duration(days: int, hours: int, minutes: int) -> tuple[int, int, int]:
    """Carry minutes over into hours and hours over into days."""
    if min(days, hours, minutes) < 0:
        raise ValueError("Voting duration components must not be negative")
    hours += minutes // MINUTES_PER_HOUR
    minutes %= MINUTES_PER_HOUR
    days += hours // HOURS_PER_DAY
    hours %= HOURS_PER_DAY
    if days == hours == minutes == 0:
        raise ValueError("Voting duration must be longer than zero")
    return days, hours, minutes


def _default_row() -> SystemSettings:
    days, hours, minutes = normalize_duration(
        settings.voting_duration_days,
        settings.voting_duration_hours,
        settings.voting_duration_minutes,
    )
    return SystemSettings(
        id=SYSTEM_SETTINGS_ID,
        voting_duration_days=days,
        voting_duration_hours=hours,
        voting_duration_minutes=minutes,
        min_votes_required=settings.min_votes_required,
        min_participation_percent=settings.min_participation_percent,
        approval_threshold_percent=settings.approval_threshold_percent,
        rejection_threshold_percent=settings.rejection_threshold_percent,
        negative_ratings_threshold=settings.negative_threshold_percent,
        rating_cooldown_minutes=settings.rating_cooldown_minutes,
        max_daily_ratings=settings.max_daily_ratings,
    )


def load_settings_row(db: Session, *, for_update: bool = False) -> SystemSettings:
    """Return the settings row, seeding it from process defaults on first use."""
    query = db.query(SystemSettings).filter(SystemSettings.id == SYSTEM_SETTINGS_ID)
    if for_update:
        query = query.with_for_update()
    row = query.first()
    if row is not None:
        return row

    row = _default_row()
    db.add(row)
    try:
        db.flush()
    except IntegrityError as err:
        # Seeded concurrently by another request; the retry reads the winner's row.
        db.rollback()
        raise TransientStoreError("System settings were seeded concurrently") from err
    logger.info("Seeded system settings with process defaults")
    return row


class SettingsService:
    """Cached reader and validated writer for system settings."""

    UPDATABLE_FIELDS = frozenset(
        {
            "min_votes_required",
            "min_participation_percent",
            "approval_threshold_percent",
            "rejection_threshold_percent",
            "negative_ratings_threshold",
            "rating_cooldown_minutes",
            "max_daily_ratings",
        }
    )

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = settings.settings_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: SettingsSnapshot | None = None
        self._expires_at = 0.0

    def get(self, db: Session, *, fresh: bool = False) -> SettingsSnapshot:
        """Return current settings, from cache unless ``fresh`` or expired."""
        now = self._clock()
        with self._lock:
            if not fresh and self._cached is not None and now < self._expires_at:
                return self._cached

        snapshot = SettingsSnapshot.from_row(load_settings_row(db))
        with self._lock:
            self._cached = snapshot
            self._expires_at = now + max(self.ttl_seconds, 0.0)
        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._expires_at = 0.0

    def update(
        self,
        db: Session,
        *,
        voting_duration: tuple[int, int, int] | None = None,
        **changes: Any,
    ) -> SettingsSnapshot:
        """Apply admin changes to the settings row inside the caller's transaction."""
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        for name in PERCENT_FIELDS & changes.keys():
            value = changes[name]
            if value is not None and not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100")
        for name in COUNT_FIELDS & changes.keys():
            value = changes[name]
            if value is not None and value < 0:
                raise ValueError(f"{name} must not be negative")

        row = load_settings_row(db, for_update=True)
        if voting_duration is not None:
            days, hours, minutes = normalize_duration(*voting_duration)
            row.voting_duration_days = days
            row.voting_duration_hours = hours
            row.voting_duration_minutes = minutes

        for name, value in changes.items():
            if value is not None:
                setattr(row, name, value)

        db.flush()
        logger.info("System settings updated: %s", ", ".join(sorted(changes)) or "voting_duration")
        return SettingsSnapshot.from_row(row)
