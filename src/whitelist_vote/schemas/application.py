# src/whitelist_vote/schemas/application.py
"""Application-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from whitelist_vote.models import ApplicationStatus

from .common import WarningsMixin

NICKNAME_PATTERN = r"^[A-Za-z0-9_]{3,16}$"


class ApplicationCreate(BaseModel):
    """Schema for submitting a whitelist application."""

    nickname: str = Field(
        ...,
        pattern=NICKNAME_PATTERN,
        description="In-game nickname: 3-16 letters, digits or underscores",
    )
    reason: str = Field(..., min_length=1, max_length=2000)


class ApplicationResolve(BaseModel):
    """Administrator decision on an application."""

    decision: Literal["approved", "rejected"]


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    candidate_id: int
    nickname: str
    reason: str
    status: ApplicationStatus
    voting_deadline: datetime | None
    positive_votes: int
    negative_votes: int
    resolution_cause: str | None
    resolved_at: datetime | None
    created_at: datetime


class ApplicationActionResponse(WarningsMixin):
    application: ApplicationResponse
    changed: bool = True


class TransitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: ApplicationStatus
    to_status: ApplicationStatus
    actor_id: int | None
    cause: str
    created_at: datetime
