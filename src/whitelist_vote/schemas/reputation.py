# src/whitelist_vote/schemas/reputation.py
"""Reputation-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from whitelist_vote.models import Polarity

from .common import WarningsMixin


class RatingCreate(BaseModel):
    """Schema for rating another member."""

    polarity: Literal["positive", "negative"]
    reason: str | None = Field(None, max_length=500)


class ScoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    positive: float
    negative: float
    net: float
    reset_at: datetime | None


class RatingRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rater_id: int
    target_id: int
    polarity: Polarity
    reason: str | None
    weight: float
    created_at: datetime


class RatingResponse(WarningsMixin):
    record: RatingRecordResponse
    score: ScoreResponse
    ejected: bool = False


class EjectionResponse(WarningsMixin):
    user_id: int
    ejected: bool
    negative: float
    negative_percent: float
    threshold_percent: float
    eligible_voters: int


class AmnestyAllResponse(BaseModel):
    user_ids: list[int]
