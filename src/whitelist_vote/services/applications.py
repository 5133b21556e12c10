# src/whitelist_vote/services/applications.py
"""Application ledger: creation and status transitions of applications.

Every mutation locks the application row (or, for creation, the candidate's
user row) before reading state, and then applies its status change with a
guarded ``UPDATE ... WHERE status = <expected>``. The guarded update keeps
transitions race-free even on stores that ignore ``FOR UPDATE``: of two
concurrent resolutions exactly one matches a row, the other reports
``already resolved``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import Role
from whitelist_vote.core.errors import (
    DuplicateApplicationError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
)
from whitelist_vote.db.time import utcnow
from whitelist_vote.models import Application, ApplicationStatus, ApplicationTransition, TransitionCause
from whitelist_vote.models.application import ACTIVE_STATUSES, TERMINAL_STATUSES
from whitelist_vote.services.identity import lock_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolveResult:
    """Outcome of a resolution attempt.

    ``changed`` is False when the application had already reached a terminal
    status; the caller must then skip every side effect.
    """

    application: Application
    previous_status: ApplicationStatus
    changed: bool

    @property
    def already_resolved(self) -> bool:
        return not self.changed

    @property
    def status(self) -> ApplicationStatus:
        return ApplicationStatus(self.application.status)


def get_application(db: Session, application_id: int) -> Application:
    application = (
        db.query(Application)
        .filter(Application.id == application_id)
        .populate_existing()
        .first()
    )
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def lock_application(db: Session, application_id: int) -> Application:
    """Return the application with a row-level exclusive lock held until commit."""
    application = (
        db.query(Application)
        .filter(Application.id == application_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def find_active_by_candidate(db: Session, candidate_id: int) -> Application | None:
    """Return the candidate's pending or voting application, if any."""
    return (
        db.query(Application)
        .filter(
            Application.candidate_id == candidate_id,
            Application.status.in_(list(ACTIVE_STATUSES)),
        )
        .order_by(Application.id.desc())
        .first()
    )


def list_active(db: Session) -> Sequence[Application]:
    return (
        db.query(Application)
        .filter(Application.status.in_(list(ACTIVE_STATUSES)))
        .order_by(Application.created_at.desc(), Application.id.desc())
        .all()
    )


def list_expired_voting_ids(db: Session, now: datetime) -> list[int]:
    """Return ids of applications still voting whose deadline is at or before ``now``."""
    rows = (
        db.query(Application.id)
        .filter(
            Application.status == ApplicationStatus.VOTING,
            Application.voting_deadline.is_not(None),
            Application.voting_deadline <= now,
        )
        .order_by(Application.voting_deadline, Application.id)
        .all()
    )
    return [row.id for row in rows]


def transition_history(db: Session, application_id: int) -> Sequence[ApplicationTransition]:
    return (
        db.query(ApplicationTransition)
        .filter(ApplicationTransition.application_id == application_id)
        .order_by(ApplicationTransition.id)
        .all()
    )


def _record_transition(
    db: Session,
    application: Application,
    previous: ApplicationStatus,
    new: ApplicationStatus,
    *,
    actor_id: int | None,
    cause: TransitionCause,
) -> None:
    db.add(
        ApplicationTransition(
            application_id=application.id,
            from_status=previous,
            to_status=new,
            actor_id=actor_id,
            cause=cause.value,
        )
    )
    logger.info(
        "Application %s: %s -> %s (actor=%s, cause=%s)",
        application.id,
        previous.value,
        new.value,
        actor_id if actor_id is not None else "system",
        cause.value,
    )


def _guarded_update(
    db: Session,
    application_id: int,
    expected: ApplicationStatus,
    **values: object,
) -> bool:
    result = db.execute(
        update(Application)
        .where(Application.id == application_id, Application.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def create_application(
    db: Session,
    candidate_id: int,
    nickname: str,
    reason: str,
) -> Application:
    """Create a pending application, refusing a second active one per candidate.

    Args:
        db: Database session
        candidate_id: User applying
        nickname: In-game nickname to whitelist on approval
        reason: Free-text motivation

    Returns:
        The new pending application.
    """
    # Locking the candidate serialises concurrent submissions from the same user.
    candidate = lock_user(db, candidate_id)
    if not candidate.is_active:
        raise NotEligibleError("Deactivated users cannot apply")
    if Role(candidate.role) is not Role.APPLICANT:
        raise NotEligibleError("You are already a member of the community")

    if find_active_by_candidate(db, candidate_id) is not None:
        raise DuplicateApplicationError()

    application = Application(
        candidate_id=candidate_id,
        nickname=nickname,
        reason=reason,
        status=ApplicationStatus.PENDING,
    )
    db.add(application)
    try:
        db.flush()
    except IntegrityError as err:
        # The partial unique index caught a concurrent submission.
        db.rollback()
        raise DuplicateApplicationError() from err

    candidate.nickname = nickname
    logger.info(
        "Application %s created for candidate %s (nickname %s)",
        application.id,
        candidate_id,
        nickname,
    )
    return application


def start_voting(
    db: Session,
    application_id: int,
    *,
    window: timedelta,
    actor_id: int | None,
    now: datetime | None = None,
) -> Application:
    """Move a pending application into voting with ``deadline = now + window``."""
    now = now or utcnow()
    application = lock_application(db, application_id)
    previous = ApplicationStatus(application.status)
    if previous is not ApplicationStatus.PENDING:
        raise InvalidStateError(
            f"Voting can only start on a pending application (current: {previous.value})"
        )

    if not _guarded_update(
        db,
        application_id,
        ApplicationStatus.PENDING,
        status=ApplicationStatus.VOTING,
        voting_deadline=now + window,
    ):
        raise InvalidStateError("Application changed state concurrently")

    _record_transition(
        db,
        application,
        previous,
        ApplicationStatus.VOTING,
        actor_id=actor_id,
        cause=TransitionCause.MANUAL,
    )
    db.flush()
    db.refresh(application)
    return application


def resolve(
    db: Session,
    application_id: int,
    outcome: ApplicationStatus,
    *,
    cause: TransitionCause,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> ResolveResult:
    """Move an application into a terminal status.

    Resolving an application that is already terminal is a no-op reported via
    ``ResolveResult.changed``; it never rewrites the stored outcome.

    Args:
        db: Database session
        application_id: Application to resolve
        outcome: Terminal status to move to
        cause: What triggered the resolution
        actor_id: User responsible, or None for the sweeper
        now: Resolution timestamp

    Returns:
        A :class:`ResolveResult` whose ``changed`` flag tells whether this call
        performed the transition.
    """
    if outcome not in TERMINAL_STATUSES:
        raise ValueError(f"{outcome.value} is not a terminal status")

    now = now or utcnow()
    application = lock_application(db, application_id)
    previous = ApplicationStatus(application.status)

    if previous.is_terminal:
        logger.info(
            "Application %s already resolved as %s; ignoring %s (%s)",
            application_id,
            previous.value,
            outcome.value,
            cause.value,
        )
        return ResolveResult(application=application, previous_status=previous, changed=False)

    if not previous.can_transition_to(outcome):
        raise InvalidStateError(
            f"Cannot move application from {previous.value} to {outcome.value}"
        )

    if not _guarded_update(
        db,
        application_id,
        previous,
        status=outcome,
        resolved_at=now,
        resolution_cause=cause.value,
    ):
        db.refresh(application)
        logger.info(
            "Application %s was resolved concurrently as %s",
            application_id,
            ApplicationStatus(application.status).value,
        )
        return ResolveResult(application=application, previous_status=previous, changed=False)

    _record_transition(db, application, previous, outcome, actor_id=actor_id, cause=cause)
    db.flush()
    db.refresh(application)
    return ResolveResult(application=application, previous_status=previous, changed=True)
