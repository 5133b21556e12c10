# src/whitelist_vote/models/reputation.py
"""Models recording peer reputation ratings."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from whitelist_vote.db.session import Base
from whitelist_vote.db.time import utcnow

from .vote import Polarity, polarity_type


class ReputationRecord(Base):
    """Weighted rating one member gave another.

    Records are kept forever; an amnesty moves the target's reset timestamp
    instead of deleting anything.
    """

    __tablename__ = "reputation_records"
    __table_args__ = (
        CheckConstraint("weight > 0", name="ck_reputation_records_weight_positive"),
        Index("ix_reputation_records_pair", "rater_id", "target_id", "created_at"),
        Index("ix_reputation_records_target", "target_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rater_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    polarity: Mapped[Polarity] = mapped_column(polarity_type("rating_polarity"), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
