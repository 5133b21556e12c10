# src/whitelist_vote/models/user.py
"""SQLAlchemy model for community members and candidates."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Enum, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from whitelist_vote.core.capabilities import Role
from whitelist_vote.db.session import Base
from whitelist_vote.db.time import utcnow


class User(Base):
    """A person known to the community, from first application onwards.

    Users are never deleted; ejection demotes them and clears ``can_vote``,
    deactivation clears ``is_active``.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "NOT can_vote OR role IN ('member', 'admin')",
            name="ck_users_can_vote_role",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Identifier on the chat platform the presentation layer talks to.
    external_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    handle: Mapped[str | None] = mapped_column(Text, nullable=True)
    nickname: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Roster identity, set once the user is approved.
    identity_key: Mapped[str | None] = mapped_column(String(36), nullable=True)

    role: Mapped[Role] = mapped_column(
        Enum(
            Role,
            name="user_role",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=Role.APPLICANT,
    )
    can_vote: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Weighted aggregates, written in the same transaction as the rating records.
    reputation_positive: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reputation_negative: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reputation_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    ratings_given: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def reputation_net(self) -> float:
        """Return positive minus negative weighted reputation."""
        return (self.reputation_positive or 0.0) - (self.reputation_negative or 0.0)

    @property
    def display_name(self) -> str:
        return self.handle or self.nickname or f"user-{self.id}"
