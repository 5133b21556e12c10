# src/whitelist_vote/services/questions.py
"""Question ledger: voters ask a candidate questions while the application is open."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import ActorCapability
from whitelist_vote.core.errors import (
    AlreadyAnsweredError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
)
from whitelist_vote.db.time import utcnow
from whitelist_vote.models import Application, ApplicationStatus, Question
from whitelist_vote.services.applications import get_application

logger = logging.getLogger(__name__)


def _require_open(application: Application) -> None:
    if ApplicationStatus(application.status).is_terminal:
        raise InvalidStateError("This application is already closed")


def get_question(db: Session, question_id: int) -> Question:
    question = (
        db.query(Question)
        .filter(Question.id == question_id)
        .populate_existing()
        .first()
    )
    if question is None:
        raise NotFoundError(f"Question {question_id} not found")
    return question


def ask_question(
    db: Session,
    actor: ActorCapability,
    application_id: int,
    text: str,
    *,
    now: datetime | None = None,
) -> Question:
    """Record a voter's question to the candidate of an open application.

    Args:
        db: Database session
        actor: Capability of the user asking
        application_id: Application the question is about
        text: Question text, already length-checked by the caller
        now: Creation timestamp, defaults to the current time

    Returns:
        The stored question.
    """
    if not actor.can_vote:
        raise NotEligibleError("Only members with voting rights can ask questions")

    application = get_application(db, application_id)
    if application.candidate_id == actor.user_id:
        raise NotEligibleError("You cannot ask questions about your own application")
    _require_open(application)

    text = text.strip()
    if not text:
        raise InvalidStateError("Question text cannot be empty")

    now = now or utcnow()
    question = Question(
        application_id=application_id,
        asker_id=actor.user_id,
        text=text,
        created_at=now,
        updated_at=now,
    )
    db.add(question)
    db.flush()
    logger.info(
        "User %s asked question %s on application %s",
        actor.user_id,
        question.id,
        application_id,
    )
    return question


def answer_question(
    db: Session,
    actor: ActorCapability,
    question_id: int,
    answer: str,
    *,
    now: datetime | None = None,
) -> Question:
    """Store the candidate's answer. A question is answered at most once.

    Args:
        db: Database session
        actor: Capability of the user answering; must be the candidate
        question_id: Question being answered
        answer: Answer text
        now: Answer timestamp, defaults to the current time

    Returns:
        The answered question.
    """
    question = get_question(db, question_id)
    application = get_application(db, question.application_id)
    if application.candidate_id != actor.user_id:
        raise NotEligibleError("Only the applicant can answer questions about their application")
    _require_open(application)

    answer = answer.strip()
    if not answer:
        raise InvalidStateError("Answer text cannot be empty")

    now = now or utcnow()
    # The IS NULL guard makes the first of two racing answers the only one stored.
    result = db.execute(
        update(Question)
        .where(Question.id == question_id, Question.answer.is_(None))
        .values(answer=answer, answered_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AlreadyAnsweredError()

    db.flush()
    db.refresh(question)
    logger.info("Question %s on application %s answered", question_id, application.id)
    return question


def list_questions(db: Session, application_id: int) -> Sequence[Question]:
    """Return an application's questions, oldest first."""
    return (
        db.query(Question)
        .filter(Question.application_id == application_id)
        .order_by(Question.created_at, Question.id)
        .all()
    )
