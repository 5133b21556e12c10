# src/whitelist_vote/models/application.py
"""Models tracking membership applications and their status history."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from whitelist_vote.db.session import Base
from whitelist_vote.db.time import utcnow

from .user import User


class ApplicationStatus(str, enum.Enum):
    """Lifecycle state of an application."""

    PENDING = "pending"
    VOTING = "voting"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: ApplicationStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ACTIVE_STATUSES = frozenset({ApplicationStatus.PENDING, ApplicationStatus.VOTING})
TERMINAL_STATUSES = frozenset(
    {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.EXPIRED}
)

# Monotonic DAG; terminal states have no outgoing edges.
ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.PENDING: frozenset(
        {ApplicationStatus.VOTING, ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}
    ),
    ApplicationStatus.VOTING: TERMINAL_STATUSES,
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
    ApplicationStatus.EXPIRED: frozenset(),
}


class TransitionCause(str, enum.Enum):
    """What triggered a status transition."""

    MANUAL = "manual"
    VOTE_TALLY = "vote_tally"
    EXPIRY = "expiry"


def _status_type(name: str) -> Enum:
    return Enum(
        ApplicationStatus,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


_ACTIVE_PREDICATE = text("status IN ('pending', 'voting')")


class Application(Base):
    """A candidate's request to join the whitelist."""

    __tablename__ = "applications"
    __table_args__ = (
        CheckConstraint("positive_votes >= 0", name="ck_applications_positive_votes"),
        CheckConstraint("negative_votes >= 0", name="ck_applications_negative_votes"),
        Index("ix_applications_status_deadline", "status", "voting_deadline"),
        # At most one pending/voting application per candidate.
        Index(
            "uq_applications_active_candidate",
            "candidate_id",
            unique=True,
            sqlite_where=_ACTIVE_PREDICATE,
            postgresql_where=_ACTIVE_PREDICATE,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
    )
    nickname: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        _status_type("application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    voting_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Denormalized vote counts, only ever changed in the vote's own transaction.
    positive_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    negative_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolution_cause: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    candidate: Mapped[User] = relationship("User")

    @property
    def total_votes(self) -> int:
        return (self.positive_votes or 0) + (self.negative_votes or 0)

    @property
    def is_terminal(self) -> bool:
        return ApplicationStatus(self.status).is_terminal


class ApplicationTransition(Base):
    """Audit row written for every status change of an application."""

    __tablename__ = "application_transitions"
    __table_args__ = (
        Index("ix_application_transitions_application", "application_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[ApplicationStatus] = mapped_column(
        _status_type("transition_from_status"),
        nullable=False,
    )
    to_status: Mapped[ApplicationStatus] = mapped_column(
        _status_type("transition_to_status"),
        nullable=False,
    )
    # Null for sweeper transitions; the deciding voter for tally transitions.
    actor_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    cause: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
