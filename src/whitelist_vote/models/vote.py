# src/whitelist_vote/models/vote.py
"""Models capturing votes on membership applications."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from whitelist_vote.db.session import Base
from whitelist_vote.db.time import utcnow


class Polarity(str, enum.Enum):
    """Direction of a vote or a reputation rating."""

    POSITIVE = "positive"
    NEGATIVE = "negative"


def polarity_type(name: str) -> Enum:
    """Return the column type used for polarity columns."""
    return Enum(
        Polarity,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=8,
        values_callable=lambda members: [m.value for m in members],
    )


class Vote(Base):
    """A single, immutable vote cast by a member on an application."""

    __tablename__ = "votes"
    __table_args__ = (
        # One vote per voter per application; this constraint is the source of truth.
        UniqueConstraint("application_id", "voter_id", name="uq_votes_application_voter"),
        Index("ix_votes_application_polarity", "application_id", "polarity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    voter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
    )
    polarity: Mapped[Polarity] = mapped_column(polarity_type("vote_polarity"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
