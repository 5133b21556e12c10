# src/whitelist_vote/schemas/vote.py
"""Vote-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from whitelist_vote.models import Polarity

from .application import ApplicationResponse
from .common import WarningsMixin


class VoteCreate(BaseModel):
    """Schema for casting a vote on an application."""

    polarity: Literal["positive", "negative"] = Field(..., description="Vote for or against")


class VoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    application_id: int
    voter_id: int
    polarity: Polarity
    created_at: datetime


class TallyResponse(BaseModel):
    positive: int
    negative: int
    eligible_voters: int
    required_votes: int | None = None
    outcome: str | None = None


class VoteCastResponse(WarningsMixin):
    vote: VoteResponse
    application: ApplicationResponse
    tally: TallyResponse
    resolved: bool = False
