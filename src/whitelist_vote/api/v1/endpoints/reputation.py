# src/whitelist_vote/api/v1/endpoints/reputation.py
"""Reputation endpoints: ratings, scores, ejection and amnesty."""

from __future__ import annotations

from fastapi import APIRouter, status

from whitelist_vote.models import Polarity
from whitelist_vote.schemas.reputation import (
    AmnestyAllResponse,
    EjectionResponse,
    RatingCreate,
    RatingRecordResponse,
    RatingResponse,
    ScoreResponse,
)
from whitelist_vote.services.reputation import Score

from ..dependencies import ActorDep, CurrentUserDep, EngineDep, SessionDep

router = APIRouter(prefix="/reputation", tags=["reputation"])


def _score_response(score: Score) -> ScoreResponse:
    return ScoreResponse(
        positive=score.positive,
        negative=score.negative,
        net=score.net,
        reset_at=score.reset_at,
    )


@router.post(
    "/{user_id}/ratings",
    status_code=status.HTTP_201_CREATED,
    response_model=RatingResponse,
)
def rate_user(
    user_id: int,
    payload: RatingCreate,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> RatingResponse:
    """Rate another member; a negative rating may trigger an ejection."""
    outcome = engine.submit_rating(
        db, actor, user_id, Polarity(payload.polarity), payload.reason
    )
    return RatingResponse(
        record=RatingRecordResponse.model_validate(outcome.rating.record),
        score=_score_response(outcome.rating.score),
        ejected=outcome.ejected,
        warnings=outcome.warnings,
    )


@router.get("/{user_id}", response_model=ScoreResponse)
def get_score(
    user_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> ScoreResponse:
    return _score_response(engine.get_user_reputation(db, user_id))


@router.get("/{user_id}/history", response_model=list[RatingRecordResponse])
def get_history(
    user_id: int,
    _user: CurrentUserDep,
    engine: EngineDep,
    db: SessionDep,
) -> list[RatingRecordResponse]:
    return [
        RatingRecordResponse.model_validate(record)
        for record in engine.reputation_history(db, user_id)
    ]


@router.post("/{user_id}/ejection", response_model=EjectionResponse)
def enforce_ejection(
    user_id: int,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> EjectionResponse:
    """Check a member against the ejection threshold and eject if it is met."""
    outcome = engine.enforce_ejection(db, actor, user_id)
    check = outcome.result.check
    return EjectionResponse(
        user_id=user_id,
        ejected=outcome.result.ejected,
        negative=check.negative,
        negative_percent=check.negative_percent,
        threshold_percent=check.threshold_percent,
        eligible_voters=check.eligible_voters,
        warnings=outcome.warnings,
    )


@router.post("/{user_id}/amnesty", response_model=ScoreResponse)
def grant_amnesty(
    user_id: int,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> ScoreResponse:
    return _score_response(engine.request_amnesty(db, actor, user_id))


@router.post("/amnesty", response_model=AmnestyAllResponse)
def grant_amnesty_to_all(
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> AmnestyAllResponse:
    return AmnestyAllResponse(user_ids=engine.amnesty_all(db, actor))
