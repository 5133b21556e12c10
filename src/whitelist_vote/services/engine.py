"""Engine API: the single entry point used by the HTTP layer and the sweeper.

Every mutating operation runs as one database transaction per attempt under the
shared :class:`RetryPolicy`. External side effects (Whitelist Sync, Notifier)
happen only after that transaction committed, and only when the transaction
actually changed something. Whitelist Sync failures become ``warnings`` on the
returned outcome. They never undo the committed decision.

Vote casting is split into two transactions: the vote is recorded first, then
the tally is re-evaluated under a fresh lock. If the second step keeps failing,
the vote stands and the application is settled by a later vote or by the
expiration sweeper.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import ActorCapability, Role
from whitelist_vote.core.errors import (
    ExternalServiceError,
    InvalidStateError,
    NotEligibleError,
    TransientStoreError,
)
from whitelist_vote.core.retry import RetryPolicy
from whitelist_vote.core.settings import settings
from whitelist_vote.db.time import as_utc, utcnow
from whitelist_vote.models import (
    Application,
    ApplicationStatus,
    ApplicationTransition,
    Polarity,
    Question,
    ReputationRecord,
    User,
    Vote,
)
from whitelist_vote.models.application import TransitionCause
from whitelist_vote.services import applications, identity, questions, reputation, votes
from whitelist_vote.services.notifier import EventKind, Notifier, get_notifier
from whitelist_vote.services.resolver import Outcome, TallyDecision, evaluate_tally
from whitelist_vote.services.settings_service import SettingsService, SettingsSnapshot
from whitelist_vote.services.whitelist import WhitelistSync, get_whitelist_sync

logger = logging.getLogger(__name__)

T = TypeVar("T")

_OUTCOME_STATUS = {
    Outcome.APPROVE: ApplicationStatus.APPROVED,
    Outcome.REJECT: ApplicationStatus.REJECTED,
}

_STATUS_EVENT = {
    ApplicationStatus.APPROVED: EventKind.APPLICATION_APPROVED,
    ApplicationStatus.REJECTED: EventKind.APPLICATION_REJECTED,
    ApplicationStatus.EXPIRED: EventKind.APPLICATION_EXPIRED,
}


@dataclass(frozen=True)
class RosterEntry:
    """Plain copy of what Whitelist Sync needs, captured before commit."""

    user_id: int
    nickname: str
    identity_key: str | None


@dataclass(frozen=True)
class _Resolution:
    result: applications.ResolveResult
    candidate_id: int
    roster: RosterEntry | None
    admin_ids: tuple[int, ...]


@dataclass
class ApplicationOutcome:
    application: Application
    warnings: list[str] = field(default_factory=list)


@dataclass
class ResolutionOutcome:
    result: applications.ResolveResult
    warnings: list[str] = field(default_factory=list)

    @property
    def application(self) -> Application:
        return self.result.application

    @property
    def changed(self) -> bool:
        return self.result.changed


@dataclass
class VoteOutcome:
    vote: Vote
    application: Application
    tally: votes.Tally
    decision: TallyDecision | None = None
    resolution: applications.ResolveResult | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class RatingOutcome:
    rating: reputation.RatingResult
    warnings: list[str] = field(default_factory=list)

    @property
    def ejected(self) -> bool:
        return self.rating.ejection is not None and self.rating.ejection.ejected


@dataclass
class EjectionOutcome:
    result: reputation.EjectionResult
    warnings: list[str] = field(default_factory=list)


class VotingEngine:
    """Orchestrates ledgers, retries and post-commit side effects."""

    def __init__(
        self,
        *,
        whitelist: WhitelistSync | None = None,
        notifier: Notifier | None = None,
        settings_service: SettingsService | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.whitelist = whitelist or get_whitelist_sync()
        self.notifier = notifier or get_notifier()
        self.settings_service = settings_service or SettingsService()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.clock = clock

    # -- plumbing ---------------------------------------------------------

    def _transaction(self, db: Session, operation: str, fn: Callable[[Session], T]) -> T:
        def attempt() -> T:
            try:
                result = fn(db)
                db.commit()
            except Exception:
                db.rollback()
                raise
            return result

        return self.retry_policy.call(attempt, operation=operation)

    @staticmethod
    def _require_manage(actor: ActorCapability) -> None:
        if not actor.can_manage:
            raise NotEligibleError("Only administrators can do this")

    def _notify(self, user_id: int, kind: EventKind, payload: dict[str, Any]) -> None:
        try:
            self.notifier.notify(user_id, kind, payload)
        except ExternalServiceError as exc:
            logger.warning("Notification %s to user %s failed: %s", kind.value, user_id, exc)
        except Exception:
            logger.warning(
                "Notification %s to user %s failed unexpectedly",
                kind.value,
                user_id,
                exc_info=True,
            )

    def _sync_roster(self, action: str, entry: RosterEntry, warnings: list[str]) -> None:
        call = self.whitelist.add if action == "add" else self.whitelist.remove
        try:
            call(entry.nickname, entry.identity_key)
        except ExternalServiceError as exc:
            logger.warning(
                "Whitelist %s for %s (user %s) failed: %s",
                action,
                entry.nickname,
                entry.user_id,
                exc,
            )
            warnings.append(
                f"Decision saved, but whitelist {action} for {entry.nickname} failed: {exc.message}"
            )
        except Exception as exc:
            logger.warning(
                "Whitelist %s for %s (user %s) failed unexpectedly",
                action,
                entry.nickname,
                entry.user_id,
                exc_info=True,
            )
            warnings.append(
                f"Decision saved, but whitelist {action} for {entry.nickname} failed: {exc}"
            )

    def _settle(
        self,
        db: Session,
        application_id: int,
        status: ApplicationStatus,
        *,
        cause: TransitionCause,
        actor_id: int | None,
        now: datetime,
    ) -> _Resolution:
        """Resolve inside the current transaction and capture side-effect data."""
        result = applications.resolve(
            db, application_id, status, cause=cause, actor_id=actor_id, now=now
        )
        application = result.application
        roster = None
        admin_ids: tuple[int, ...] = ()
        if result.changed:
            if status is ApplicationStatus.APPROVED:
                member = identity.admit_member(db, application.candidate_id, application.nickname)
                roster = RosterEntry(member.id, application.nickname, member.identity_key)
            admin_ids = tuple(user.id for user in identity.list_admins(db))
        return _Resolution(
            result=result,
            candidate_id=application.candidate_id,
            roster=roster,
            admin_ids=admin_ids,
        )

    def _after_resolution(self, resolution: _Resolution, warnings: list[str]) -> None:
        """Run side effects for a committed resolution, at most once per transition."""
        if not resolution.result.changed:
            return
        application = resolution.result.application
        status = ApplicationStatus(application.status)
        if resolution.roster is not None:
            self._sync_roster("add", resolution.roster, warnings)

        payload = {
            "application_id": application.id,
            "nickname": application.nickname,
            "status": status.value,
        }
        self._notify(resolution.candidate_id, _STATUS_EVENT[status], payload)
        for admin_id in resolution.admin_ids:
            if admin_id != resolution.candidate_id:
                self._notify(admin_id, _STATUS_EVENT[status], payload)

    def _after_ejection(self, result: reputation.EjectionResult, warnings: list[str]) -> None:
        if not result.ejected:
            return
        user = result.user
        if user.nickname:
            self._sync_roster(
                "remove", RosterEntry(user.id, user.nickname, user.identity_key), warnings
            )
        self._notify(
            user.id,
            EventKind.USER_EJECTED,
            {"negative": result.check.negative, "threshold": result.check.threshold_percent},
        )

    # -- identity ---------------------------------------------------------

    def register_user(
        self,
        db: Session,
        external_id: int,
        *,
        handle: str | None = None,
        nickname: str | None = None,
    ) -> User:
        """Register a new applicant; the configured admin id registers as admin."""
        is_admin = (
            settings.admin_external_id is not None and external_id == settings.admin_external_id
        )
        return self._transaction(
            db,
            "register_user",
            lambda s: identity.register_user(
                s,
                external_id,
                handle=handle,
                nickname=nickname,
                role=Role.ADMIN if is_admin else Role.APPLICANT,
                can_vote=is_admin,
            ),
        )

    def change_role(
        self,
        db: Session,
        actor: ActorCapability,
        user_id: int,
        role: Role,
        *,
        can_vote: bool | None = None,
    ) -> User:
        self._require_manage(actor)
        return self._transaction(
            db,
            "change_role",
            lambda s: identity.set_role(s, user_id, role, can_vote=can_vote),
        )

    def set_voting_rights(
        self, db: Session, actor: ActorCapability, user_id: int, can_vote: bool
    ) -> User:
        self._require_manage(actor)
        return self._transaction(
            db,
            "set_voting_rights",
            lambda s: identity.set_voting_rights(s, user_id, can_vote),
        )

    def deactivate_user(self, db: Session, actor: ActorCapability, user_id: int) -> User:
        self._require_manage(actor)
        return self._transaction(
            db, "deactivate_user", lambda s: identity.deactivate_user(s, user_id)
        )

    # -- applications -----------------------------------------------------

    def submit_application(
        self,
        db: Session,
        actor: ActorCapability,
        nickname: str,
        reason: str,
    ) -> ApplicationOutcome:
        def work(s: Session) -> tuple[Application, tuple[int, ...]]:
            application = applications.create_application(s, actor.user_id, nickname, reason)
            return application, tuple(user.id for user in identity.list_admins(s))

        application, admin_ids = self._transaction(db, "submit_application", work)
        for admin_id in admin_ids:
            self._notify(
                admin_id,
                EventKind.APPLICATION_SUBMITTED,
                {"application_id": application.id, "nickname": application.nickname},
            )
        return ApplicationOutcome(application=application)

    def start_voting(
        self, db: Session, actor: ActorCapability, application_id: int
    ) -> ApplicationOutcome:
        self._require_manage(actor)
        now = self.clock()

        def work(s: Session) -> tuple[Application, list[int]]:
            window = self.settings_service.get(s).voting_window
            application = applications.start_voting(
                s, application_id, window=window, actor_id=actor.user_id, now=now
            )
            voter_ids = [
                user.id
                for user in identity.list_eligible_voters(s)
                if user.id != application.candidate_id
            ]
            return application, voter_ids

        application, voter_ids = self._transaction(db, "start_voting", work)
        payload = {
            "application_id": application.id,
            "nickname": application.nickname,
            "deadline": as_utc(application.voting_deadline).isoformat(),
        }
        for voter_id in voter_ids:
            self._notify(voter_id, EventKind.VOTING_STARTED, payload)
        return ApplicationOutcome(application=application)

    def admin_resolve(
        self,
        db: Session,
        actor: ActorCapability,
        application_id: int,
        status: ApplicationStatus,
    ) -> ResolutionOutcome:
        """Approve or reject an application by administrator decision."""
        self._require_manage(actor)
        if status not in _STATUS_EVENT or status is ApplicationStatus.EXPIRED:
            raise InvalidStateError("Administrators can only approve or reject applications")
        now = self.clock()
        resolution = self._transaction(
            db,
            "admin_resolve",
            lambda s: self._settle(
                s,
                application_id,
                status,
                cause=TransitionCause.MANUAL,
                actor_id=actor.user_id,
                now=now,
            ),
        )
        outcome = ResolutionOutcome(result=resolution.result)
        self._after_resolution(resolution, outcome.warnings)
        return outcome

    def resolve_if_decisive(
        self,
        db: Session,
        application_id: int,
        *,
        cause: TransitionCause,
        actor_id: int | None = None,
        expire: bool = False,
        now: datetime | None = None,
    ) -> tuple[TallyDecision | None, _Resolution | None]:
        """Re-evaluate the committed tally under lock and resolve when decisive.

        With ``expire`` set, an undecided tally resolves the application to
        ``expired``. Runs inside the caller's transaction.
        """
        now = now or self.clock()
        snapshot = self.settings_service.get(db, fresh=expire)
        application = applications.lock_application(db, application_id)
        if ApplicationStatus(application.status) is not ApplicationStatus.VOTING:
            return None, None

        decision = evaluate_tally(
            application.positive_votes,
            application.negative_votes,
            identity.count_eligible_voters(db),
            snapshot.thresholds,
        )
        status = _OUTCOME_STATUS.get(decision.outcome)
        if status is None:
            if not expire:
                return decision, None
            status = ApplicationStatus.EXPIRED
        resolution = self._settle(
            db, application_id, status, cause=cause, actor_id=actor_id, now=now
        )
        return decision, resolution

    # -- questions --------------------------------------------------------

    def ask_question(
        self, db: Session, actor: ActorCapability, application_id: int, text: str
    ) -> Question:
        """Put a voter's question to the candidate and notify the candidate."""
        now = self.clock()
        question, candidate_id = self._transaction(
            db,
            "ask_question",
            lambda s: (
                questions.ask_question(s, actor, application_id, text, now=now),
                applications.get_application(s, application_id).candidate_id,
            ),
        )
        self._notify(
            candidate_id,
            EventKind.QUESTION_ASKED,
            {"application_id": application_id, "question_id": question.id, "text": question.text},
        )
        return question

    def answer_question(
        self, db: Session, actor: ActorCapability, question_id: int, answer: str
    ) -> Question:
        """Record the candidate's answer and notify whoever asked."""
        now = self.clock()
        question = self._transaction(
            db,
            "answer_question",
            lambda s: questions.answer_question(s, actor, question_id, answer, now=now),
        )
        self._notify(
            question.asker_id,
            EventKind.QUESTION_ANSWERED,
            {
                "application_id": question.application_id,
                "question_id": question.id,
                "answer": question.answer,
            },
        )
        return question

    # -- votes ------------------------------------------------------------

    def cast_vote(
        self,
        db: Session,
        actor: ActorCapability,
        application_id: int,
        polarity: Polarity,
    ) -> VoteOutcome:
        """Record a vote, then settle the application if the tally became decisive.

        Args:
            db: Database session
            actor: Capability of the voter
            application_id: Application being voted on
            polarity: Vote for or against

        Returns:
            The recorded vote, the tally decision and, when the vote decided
            the application, its resolution. Failed roster updates and a
            postponed tally evaluation show up in ``warnings``.
        """
        now = self.clock()
        recorded = self._transaction(
            db,
            "cast_vote",
            lambda s: votes.cast_vote(s, application_id, actor, polarity, now=now),
        )
        outcome = VoteOutcome(
            vote=recorded.vote,
            application=recorded.application,
            tally=recorded.tally,
        )

        try:
            decision, resolution = self._transaction(
                db,
                "resolve_after_vote",
                lambda s: self.resolve_if_decisive(
                    s,
                    application_id,
                    cause=TransitionCause.VOTE_TALLY,
                    actor_id=actor.user_id,
                    now=now,
                ),
            )
        except TransientStoreError:
            logger.error(
                "Vote on application %s saved but tally evaluation failed; "
                "it will be settled later",
                application_id,
            )
            outcome.warnings.append("Vote saved; the result will be evaluated later")
            return outcome

        outcome.decision = decision
        if resolution is not None:
            outcome.resolution = resolution.result
            outcome.application = resolution.result.application
            self._after_resolution(resolution, outcome.warnings)
        return outcome

    def settle_expired(
        self, db: Session, application_id: int, *, now: datetime | None = None
    ) -> ResolutionOutcome | None:
        """Close a voting application whose deadline has passed.

        A decisive tally still approves or rejects; otherwise it expires. Returns
        None when the application is no longer voting or its deadline moved.
        """
        now = now or self.clock()

        def work(s: Session) -> _Resolution | None:
            application = applications.get_application(s, application_id)
            deadline = application.voting_deadline
            if deadline is None or as_utc(deadline) > now:
                return None
            _, resolution = self.resolve_if_decisive(
                s, application_id, cause=TransitionCause.EXPIRY, expire=True, now=now
            )
            return resolution

        resolution = self._transaction(db, "settle_expired", work)
        if resolution is None:
            return None
        outcome = ResolutionOutcome(result=resolution.result)
        self._after_resolution(resolution, outcome.warnings)
        return outcome

    # -- reputation -------------------------------------------------------

    def submit_rating(
        self,
        db: Session,
        actor: ActorCapability,
        target_id: int,
        polarity: Polarity,
        reason: str | None = None,
    ) -> RatingOutcome:
        now = self.clock()

        def work(s: Session) -> reputation.RatingResult:
            snapshot = self.settings_service.get(s)
            return reputation.rate(
                s,
                actor,
                target_id,
                polarity,
                snapshot=snapshot,
                reason=reason,
                admin_weight=settings.admin_rating_weight,
                min_voters=settings.ejection_min_voters,
                now=now,
            )

        result = self._transaction(db, "submit_rating", work)
        outcome = RatingOutcome(rating=result)
        if result.ejection is not None:
            self._after_ejection(result.ejection, outcome.warnings)
        return outcome

    def enforce_ejection(
        self, db: Session, actor: ActorCapability, user_id: int
    ) -> EjectionOutcome:
        """Evaluate a user against the ejection threshold and eject if it is met."""
        self._require_manage(actor)

        def work(s: Session) -> reputation.EjectionResult:
            snapshot = self.settings_service.get(s, fresh=True)
            return reputation.enforce_ejection(
                s, user_id, snapshot, min_voters=settings.ejection_min_voters
            )

        result = self._transaction(db, "enforce_ejection", work)
        outcome = EjectionOutcome(result=result)
        self._after_ejection(result, outcome.warnings)
        return outcome

    def check_ejection(self, db: Session, user_id: int) -> bool:
        snapshot = self.settings_service.get(db)
        user = identity.get_user(db, user_id)
        return reputation.check_ejection(
            db, user, snapshot, min_voters=settings.ejection_min_voters
        ).should_eject

    def request_amnesty(
        self, db: Session, actor: ActorCapability, user_id: int
    ) -> reputation.Score:
        self._require_manage(actor)
        now = self.clock()
        score = self._transaction(
            db, "amnesty", lambda s: reputation.amnesty(s, user_id, now=now)
        )
        self._notify(user_id, EventKind.REPUTATION_AMNESTY, {"reset_at": now.isoformat()})
        return score

    def amnesty_all(self, db: Session, actor: ActorCapability) -> list[int]:
        self._require_manage(actor)
        now = self.clock()
        user_ids = self._transaction(
            db, "amnesty_all", lambda s: reputation.amnesty_all(s, now=now)
        )
        for user_id in user_ids:
            self._notify(user_id, EventKind.REPUTATION_AMNESTY, {"reset_at": now.isoformat()})
        return user_ids

    # -- settings ---------------------------------------------------------

    def get_settings(self, db: Session) -> SettingsSnapshot:
        return self.settings_service.get(db)

    def update_settings(
        self,
        db: Session,
        actor: ActorCapability,
        *,
        voting_duration: tuple[int, int, int] | None = None,
        **changes: Any,
    ) -> SettingsSnapshot:
        self._require_manage(actor)
        snapshot = self._transaction(
            db,
            "update_settings",
            lambda s: self.settings_service.update(
                s, voting_duration=voting_duration, **changes
            ),
        )
        self.settings_service.invalidate()
        return snapshot

    # -- read views -------------------------------------------------------

    def get_application_status(self, db: Session, application_id: int) -> Application:
        return applications.get_application(db, application_id)

    def list_active_applications(self, db: Session) -> Sequence[Application]:
        return applications.list_active(db)

    def get_tally(self, db: Session, application_id: int) -> tuple[votes.Tally, TallyDecision]:
        """Return the committed tally and what the resolver would decide on it."""
        current = votes.tally(db, application_id)
        decision = evaluate_tally(
            current.positive,
            current.negative,
            current.eligible_voters,
            self.settings_service.get(db).thresholds,
        )
        return current, decision

    def list_votes(self, db: Session, application_id: int) -> Sequence[Vote]:
        applications.get_application(db, application_id)
        return votes.list_votes(db, application_id)

    def transition_history(
        self, db: Session, application_id: int
    ) -> Sequence[ApplicationTransition]:
        applications.get_application(db, application_id)
        return applications.transition_history(db, application_id)

    def list_questions(self, db: Session, application_id: int) -> Sequence[Question]:
        applications.get_application(db, application_id)
        return questions.list_questions(db, application_id)

    def get_user_reputation(self, db: Session, user_id: int) -> reputation.Score:
        return reputation.score(db, user_id)

    def reputation_history(self, db: Session, user_id: int) -> Sequence[ReputationRecord]:
        return reputation.history(db, user_id)


class _VotingEngineSingleton:
    _instance: VotingEngine | None = None

    @classmethod
    def get_instance(cls) -> VotingEngine:
        if cls._instance is None:
            cls._instance = VotingEngine()
        return cls._instance


def get_voting_engine() -> VotingEngine:
    """Return the process-wide engine."""
    return _VotingEngineSingleton.get_instance()
