# src/whitelist_vote/services/votes.py
"""Vote ledger: recording votes and reading tallies."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import ActorCapability
from whitelist_vote.core.errors import (
    AlreadyVotedError,
    ApplicationNotVotableError,
    NotEligibleError,
)
from whitelist_vote.db.time import as_utc, utcnow
from whitelist_vote.models import Application, ApplicationStatus, Polarity, Vote
from whitelist_vote.services.applications import get_application, lock_application
from whitelist_vote.services.identity import count_eligible_voters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tally:
    positive: int
    negative: int
    eligible_voters: int

    @property
    def total(self) -> int:
        return self.positive + self.negative


@dataclass(frozen=True)
class VoteResult:
    vote: Vote
    application: Application
    tally: Tally


def cast_vote(
    db: Session,
    application_id: int,
    actor: ActorCapability,
    polarity: Polarity,
    *,
    now: datetime | None = None,
) -> VoteResult:
    """Record ``actor``'s vote and bump the application's counter in one transaction.

    The unique (application, voter) constraint decides duplicates, so a retried
    or double-submitted request can never count twice.

    Args:
        db: Database session
        application_id: Application being voted on
        actor: Capability of the voter
        polarity: Vote for or against
        now: Vote timestamp, checked against the voting deadline

    Returns:
        The stored vote with the application and its updated tally.
    """
    now = now or utcnow()
    if not actor.can_vote:
        raise NotEligibleError("You do not have voting rights")

    application = lock_application(db, application_id)
    if application.candidate_id == actor.user_id:
        raise NotEligibleError("You cannot vote on your own application")
    if ApplicationStatus(application.status) is not ApplicationStatus.VOTING:
        raise ApplicationNotVotableError()
    if application.voting_deadline is not None and as_utc(application.voting_deadline) <= now:
        raise ApplicationNotVotableError("The voting window for this application has closed")

    vote = Vote(
        application_id=application_id,
        voter_id=actor.user_id,
        polarity=polarity,
        created_at=now,
    )
    db.add(vote)
    try:
        db.flush()
    except IntegrityError as err:
        db.rollback()
        raise AlreadyVotedError() from err

    counter = (
        Application.positive_votes
        if polarity is Polarity.POSITIVE
        else Application.negative_votes
    )
    incremented = db.execute(
        update(Application)
        .where(
            Application.id == application_id,
            Application.status == ApplicationStatus.VOTING,
        )
        .values({counter: counter + 1})
        .execution_options(synchronize_session=False)
    )
    if incremented.rowcount != 1:
        # Resolved between our read and our write.
        db.rollback()
        raise ApplicationNotVotableError()

    db.refresh(application)
    logger.info(
        "Vote recorded on application %s by user %s: %s (now %d+/%d-)",
        application_id,
        actor.user_id,
        polarity.value,
        application.positive_votes,
        application.negative_votes,
    )
    return VoteResult(
        vote=vote,
        application=application,
        tally=Tally(
            positive=application.positive_votes,
            negative=application.negative_votes,
            eligible_voters=count_eligible_voters(db),
        ),
    )


def tally(db: Session, application_id: int) -> Tally:
    """Return the committed vote counts for an application."""
    application = get_application(db, application_id)
    return Tally(
        positive=application.positive_votes,
        negative=application.negative_votes,
        eligible_voters=count_eligible_voters(db),
    )


def count_votes(db: Session, application_id: int) -> tuple[int, int]:
    """Count votes from the ledger itself rather than the cached counters."""
    positive, negative = (
        db.query(
            func.coalesce(func.sum(case((Vote.polarity == Polarity.POSITIVE, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Vote.polarity == Polarity.NEGATIVE, 1), else_=0)), 0),
        )
        .filter(Vote.application_id == application_id)
        .one()
    )
    return int(positive), int(negative)


def list_votes(db: Session, application_id: int) -> Sequence[Vote]:
    return (
        db.query(Vote)
        .filter(Vote.application_id == application_id)
        .order_by(Vote.created_at, Vote.id)
        .all()
    )
