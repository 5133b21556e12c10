# src/whitelist_vote/services/reputation.py
"""Reputation engine: weighted peer ratings, ejection and amnesty.

Amnesty semantics: an amnesty zeroes the cached negative aggregate and stamps
``reputation_reset_at``. From then on only negative ratings created after that
timestamp count towards the aggregate, so a pre-amnesty rating can never
contribute to a later ejection. Positive ratings always count. Historical
records are never deleted.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import VOTING_ROLES, ActorCapability, Role
from whitelist_vote.core.errors import (
    CooldownError,
    InvalidStateError,
    NotEligibleError,
    SelfRatingError,
)
from whitelist_vote.db.time import utcnow
from whitelist_vote.models import Polarity, ReputationRecord, User
from whitelist_vote.services.identity import (
    count_eligible_voters,
    get_user,
    lock_user,
    lock_users,
)
from whitelist_vote.services.resolver import EjectionCheck, evaluate_ejection
from whitelist_vote.services.settings_service import SettingsSnapshot

logger = logging.getLogger(__name__)

DAILY_WINDOW = timedelta(days=1)


@dataclass(frozen=True)
class Score:
    positive: float
    negative: float
    reset_at: datetime | None = None

    @property
    def net(self) -> float:
        return self.positive - self.negative

    @classmethod
    def of(cls, user: User) -> Score:
        return cls(
            positive=user.reputation_positive or 0.0,
            negative=user.reputation_negative or 0.0,
            reset_at=user.reputation_reset_at,
        )


@dataclass(frozen=True)
class EjectionResult:
    user: User
    check: EjectionCheck
    ejected: bool


@dataclass(frozen=True)
class RatingResult:
    record: ReputationRecord
    score: Score
    ejection: EjectionResult | None


def rating_weight(rater: User, admin_weight: float) -> float:
    """Return the weight of a rating given by ``rater``.

    Admins carry ``admin_weight``; members whose own reputation leans positive
    carry up to 1.5 depending on how strongly it leans; everyone else 1.0.
    """
    if Role(rater.role) is Role.ADMIN:
        return admin_weight
    positive = rater.reputation_positive or 0.0
    negative = rater.reputation_negative or 0.0
    if positive > negative:
        return 1.0 + 0.5 * positive / (positive + negative)
    return 1.0


def score(db: Session, user_id: int) -> Score:
    return Score.of(get_user(db, user_id))


def recompute_score(db: Session, user_id: int) -> Score:
    """Rebuild a user's score from the records, honouring the amnesty cut-off."""
    user = get_user(db, user_id)
    positive = (
        db.query(func.coalesce(func.sum(ReputationRecord.weight), 0.0))
        .filter(
            ReputationRecord.target_id == user_id,
            ReputationRecord.polarity == Polarity.POSITIVE,
        )
        .scalar()
    )
    negative_query = db.query(func.coalesce(func.sum(ReputationRecord.weight), 0.0)).filter(
        ReputationRecord.target_id == user_id,
        ReputationRecord.polarity == Polarity.NEGATIVE,
    )
    if user.reputation_reset_at is not None:
        negative_query = negative_query.filter(
            ReputationRecord.created_at > user.reputation_reset_at
        )
    return Score(
        positive=float(positive or 0.0),
        negative=float(negative_query.scalar() or 0.0),
        reset_at=user.reputation_reset_at,
    )


def history(db: Session, user_id: int) -> Sequence[ReputationRecord]:
    """Return every rating a user received, newest first, including pre-amnesty ones."""
    get_user(db, user_id)
    return (
        db.query(ReputationRecord)
        .filter(ReputationRecord.target_id == user_id)
        .order_by(ReputationRecord.created_at.desc(), ReputationRecord.id.desc())
        .all()
    )


def check_ejection(
    db: Session,
    user: User,
    snapshot: SettingsSnapshot,
    *,
    min_voters: int,
) -> EjectionCheck:
    """Evaluate ``user`` against the ejection threshold. Admins are never ejected.

    Args:
        db: Database session
        user: User whose negative aggregate is checked
        snapshot: Settings carrying the threshold percentage
        min_voters: Smallest eligible population for which ejection applies

    Returns:
        The ejection check, with ``should_eject`` forced off for non-members.
    """
    eligible = count_eligible_voters(db)
    check = evaluate_ejection(
        user.reputation_negative or 0.0,
        eligible,
        snapshot.negative_ratings_threshold,
        min_voters=min_voters,
    )
    if Role(user.role) is not Role.MEMBER and check.should_eject:
        return EjectionCheck(
            should_eject=False,
            negative=check.negative,
            negative_percent=check.negative_percent,
            threshold_percent=check.threshold_percent,
            eligible_voters=check.eligible_voters,
        )
    return check


def eject(db: Session, user: User) -> bool:
    """Demote a member and revoke voting rights.

    Returns True only for the call that actually performed the demotion, so the
    roster removal that follows happens once per ejection.
    """
    result = db.execute(
        update(User)
        .where(User.id == user.id, User.role == Role.MEMBER)
        .values(role=Role.APPLICANT, can_vote=False)
        .execution_options(synchronize_session=False)
    )
    db.refresh(user)
    if result.rowcount == 1:
        logger.warning(
            "User %s ejected: negative reputation %.2f crossed the threshold",
            user.id,
            user.reputation_negative,
        )
        return True
    return False


def enforce_ejection(
    db: Session,
    user_id: int,
    snapshot: SettingsSnapshot,
    *,
    min_voters: int,
) -> EjectionResult:
    """Check a user and eject them when the threshold is met."""
    user = lock_user(db, user_id)
    check = check_ejection(db, user, snapshot, min_voters=min_voters)
    ejected = eject(db, user) if check.should_eject else False
    return EjectionResult(user=user, check=check, ejected=ejected)


def rate(
    db: Session,
    actor: ActorCapability,
    target_id: int,
    polarity: Polarity,
    *,
    snapshot: SettingsSnapshot,
    reason: str | None = None,
    admin_weight: float = 1.5,
    min_voters: int = 3,
    now: datetime | None = None,
) -> RatingResult:
    """Record a rating and update the target's aggregate in the same transaction.

    Args:
        db: Database session
        actor: Capability of the rater
        target_id: User being rated
        polarity: Positive or negative rating
        snapshot: Settings carrying cooldown, daily cap and ejection threshold
        reason: Optional free-text reason
        admin_weight: Weight of a rating given by an administrator
        min_voters: Smallest eligible population for which ejection applies
        now: Rating timestamp

    Returns:
        The stored record, the target's new score and, for negative ratings,
        the ejection result.
    """
    now = now or utcnow()
    if not actor.can_vote:
        raise NotEligibleError("You do not have rating rights")
    if actor.user_id == target_id:
        raise SelfRatingError()

    # Rater and target rows both change; lock them in ascending id order.
    locked = lock_users(db, (actor.user_id, target_id))
    target = locked[target_id]
    rater = locked[actor.user_id]
    if not target.is_active or Role(target.role) not in VOTING_ROLES:
        raise InvalidStateError("Only active members can be rated")

    cooldown = timedelta(minutes=snapshot.rating_cooldown_minutes)
    if cooldown:
        recent = (
            db.query(ReputationRecord.id)
            .filter(
                ReputationRecord.rater_id == actor.user_id,
                ReputationRecord.target_id == target_id,
                ReputationRecord.created_at > now - cooldown,
            )
            .first()
        )
        if recent is not None:
            raise CooldownError()

    if snapshot.max_daily_ratings > 0:
        given_today = (
            db.query(func.count(ReputationRecord.id))
            .filter(
                ReputationRecord.rater_id == actor.user_id,
                ReputationRecord.created_at > now - DAILY_WINDOW,
            )
            .scalar()
            or 0
        )
        if given_today >= snapshot.max_daily_ratings:
            raise CooldownError("You have reached today's rating limit")

    weight = rating_weight(rater, admin_weight)
    record = ReputationRecord(
        rater_id=actor.user_id,
        target_id=target_id,
        polarity=polarity,
        reason=reason,
        weight=weight,
        created_at=now,
    )
    db.add(record)

    aggregate = (
        User.reputation_positive if polarity is Polarity.POSITIVE else User.reputation_negative
    )
    db.execute(
        update(User)
        .where(User.id == target_id)
        .values({aggregate: aggregate + weight})
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(User)
        .where(User.id == actor.user_id)
        .values(ratings_given=User.ratings_given + 1)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    db.refresh(target)
    logger.info(
        "User %s rated user %s %s (weight %.2f); now %.2f+/%.2f-",
        actor.user_id,
        target_id,
        polarity.value,
        weight,
        target.reputation_positive,
        target.reputation_negative,
    )

    ejection = None
    if polarity is Polarity.NEGATIVE:
        check = check_ejection(db, target, snapshot, min_voters=min_voters)
        ejected = eject(db, target) if check.should_eject else False
        ejection = EjectionResult(user=target, check=check, ejected=ejected)

    return RatingResult(record=record, score=Score.of(target), ejection=ejection)


def amnesty(db: Session, user_id: int, *, now: datetime | None = None) -> Score:
    """Zero the negative aggregate and move the reset baseline to ``now``."""
    now = now or utcnow()
    user = lock_user(db, user_id)
    previous = user.reputation_negative
    user.reputation_negative = 0.0
    user.reputation_reset_at = now
    db.flush()
    logger.info("Amnesty for user %s: negative reputation %.2f -> 0", user_id, previous)
    return Score.of(user)


def amnesty_all(db: Session, *, now: datetime | None = None) -> list[int]:
    """Apply :func:`amnesty` to every user carrying negative reputation."""
    now = now or utcnow()
    user_ids = [
        row.id
        for row in db.query(User.id).filter(User.reputation_negative > 0).order_by(User.id).all()
    ]
    for user_id in user_ids:
        amnesty(db, user_id, now=now)
    logger.info("Bulk amnesty applied to %d users", len(user_ids))
    return user_ids
