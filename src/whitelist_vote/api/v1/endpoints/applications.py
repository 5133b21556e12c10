# src/whitelist_vote/api/v1/endpoints/applications.py
"""Application and vote endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from whitelist_vote.models import ApplicationStatus, Polarity
from whitelist_vote.schemas.application import (
    ApplicationActionResponse,
    ApplicationCreate,
    ApplicationResolve,
    ApplicationResponse,
    TransitionResponse,
)
from whitelist_vote.schemas.question import AnswerCreate, QuestionCreate, QuestionResponse
from whitelist_vote.schemas.vote import (
    TallyResponse,
    VoteCastResponse,
    VoteCreate,
    VoteResponse,
)

from ..dependencies import ActorDep, CurrentUserDep, EngineDep, SessionDep

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ApplicationActionResponse)
def submit_application(
    payload: ApplicationCreate,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> ApplicationActionResponse:
    """Submit a whitelist application for the calling user."""
    outcome = engine.submit_application(db, actor, payload.nickname, payload.reason)
    return ApplicationActionResponse(
        application=ApplicationResponse.model_validate(outcome.application),
        warnings=outcome.warnings,
    )


@router.get("", response_model=list[ApplicationResponse])
def list_active_applications(
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> list[ApplicationResponse]:
    return [
        ApplicationResponse.model_validate(application)
        for application in engine.list_active_applications(db)
    ]


@router.get("/{application_id}", response_model=ApplicationResponse)
def get_application(
    application_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> ApplicationResponse:
    return ApplicationResponse.model_validate(engine.get_application_status(db, application_id))


@router.get("/{application_id}/history", response_model=list[TransitionResponse])
def get_application_history(
    application_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> list[TransitionResponse]:
    return [
        TransitionResponse.model_validate(transition)
        for transition in engine.transition_history(db, application_id)
    ]


@router.post("/{application_id}/start-voting", response_model=ApplicationActionResponse)
def start_voting(
    application_id: int,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> ApplicationActionResponse:
    """Open the voting window on a pending application (admins only)."""
    outcome = engine.start_voting(db, actor, application_id)
    return ApplicationActionResponse(
        application=ApplicationResponse.model_validate(outcome.application),
        warnings=outcome.warnings,
    )


@router.post("/{application_id}/resolve", response_model=ApplicationActionResponse)
def resolve_application(
    application_id: int,
    payload: ApplicationResolve,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> ApplicationActionResponse:
    """Approve or reject an application (admins only).

    Resolving an application that is already closed reports ``changed: false``
    and leaves the stored outcome untouched.
    """
    outcome = engine.admin_resolve(db, actor, application_id, ApplicationStatus(payload.decision))
    return ApplicationActionResponse(
        application=ApplicationResponse.model_validate(outcome.application),
        changed=outcome.changed,
        warnings=outcome.warnings,
    )


@router.post(
    "/{application_id}/votes",
    status_code=status.HTTP_201_CREATED,
    response_model=VoteCastResponse,
)
def cast_vote(
    application_id: int,
    payload: VoteCreate,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> VoteCastResponse:
    outcome = engine.cast_vote(db, actor, application_id, Polarity(payload.polarity))
    decision = outcome.decision
    return VoteCastResponse(
        vote=VoteResponse.model_validate(outcome.vote),
        application=ApplicationResponse.model_validate(outcome.application),
        tally=TallyResponse(
            positive=outcome.tally.positive,
            negative=outcome.tally.negative,
            eligible_voters=outcome.tally.eligible_voters,
            required_votes=decision.required_votes if decision else None,
            outcome=decision.outcome.value if decision else None,
        ),
        resolved=outcome.resolution is not None and outcome.resolution.changed,
        warnings=outcome.warnings,
    )


@router.get("/{application_id}/votes", response_model=list[VoteResponse])
def list_votes(
    application_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> list[VoteResponse]:
    return [VoteResponse.model_validate(vote) for vote in engine.list_votes(db, application_id)]


@router.get("/{application_id}/tally", response_model=TallyResponse)
def get_tally(
    application_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> TallyResponse:
    current, decision = engine.get_tally(db, application_id)
    return TallyResponse(
        positive=current.positive,
        negative=current.negative,
        eligible_voters=current.eligible_voters,
        required_votes=decision.required_votes,
        outcome=decision.outcome.value,
    )


@router.post(
    "/{application_id}/questions",
    status_code=status.HTTP_201_CREATED,
    response_model=QuestionResponse,
)
def ask_question(
    application_id: int,
    payload: QuestionCreate,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> QuestionResponse:
    """Ask the applicant a question (members with voting rights only)."""
    question = engine.ask_question(db, actor, application_id, payload.text)
    return QuestionResponse.model_validate(question)


@router.get("/{application_id}/questions", response_model=list[QuestionResponse])
def list_questions(
    application_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> list[QuestionResponse]:
    return [
        QuestionResponse.model_validate(question)
        for question in engine.list_questions(db, application_id)
    ]


@router.post("/questions/{question_id}/answer", response_model=QuestionResponse)
def answer_question(
    question_id: int,
    payload: AnswerCreate,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> QuestionResponse:
    """Answer a question about your own application."""
    question = engine.answer_question(db, actor, question_id, payload.answer)
    return QuestionResponse.model_validate(question)
