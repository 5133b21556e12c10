"""System-level settings row."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import CheckConstraint, DateTime, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from whitelist_vote.db.session import Base
from whitelist_vote.db.time import utcnow

SYSTEM_SETTINGS_ID = 1


class SystemSettings(Base):
    """Admin-tunable voting and reputation thresholds (a single row)."""

    __tablename__ = "system_settings"
    __table_args__ = (
        CheckConstraint(f"id = {SYSTEM_SETTINGS_ID}", name="ck_system_settings_singleton"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SYSTEM_SETTINGS_ID)
    voting_duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    voting_duration_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    voting_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_votes_required: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    min_participation_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    approval_threshold_percent: Mapped[float] = mapped_column(Float, nullable=False, default=60.0)
    rejection_threshold_percent: Mapped[float] = mapped_column(Float, nullable=False, default=60.0)
    # Percentage of eligible voters whose weighted negative ratings eject a member.
    negative_ratings_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=30.0)
    rating_cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    max_daily_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def voting_window(self) -> timedelta:
        return timedelta(
            days=self.voting_duration_days,
            hours=self.voting_duration_hours,
            minutes=self.voting_duration_minutes,
        )
