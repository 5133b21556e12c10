"""System settings schemas."""

from pydantic import BaseModel, ConfigDict, Field


class SystemSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    voting_duration_days: int
    voting_duration_hours: int
    voting_duration_minutes: int
    min_votes_required: int
    min_participation_percent: float
    approval_threshold_percent: float
    rejection_threshold_percent: float
    negative_ratings_threshold: float
    rating_cooldown_minutes: int
    max_daily_ratings: int


class VotingDuration(BaseModel):
    days: int = Field(0, ge=0)
    hours: int = Field(0, ge=0)
    minutes: int = Field(0, ge=0)


class SystemSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    voting_duration: VotingDuration | None = None
    min_votes_required: int | None = Field(None, ge=0)
    min_participation_percent: float | None = Field(None, ge=0, le=100)
    approval_threshold_percent: float | None = Field(None, ge=0, le=100)
    rejection_threshold_percent: float | None = Field(None, ge=0, le=100)
    negative_ratings_threshold: float | None = Field(None, ge=0, le=100)
    rating_cooldown_minutes: int | None = Field(None, ge=0)
    max_daily_ratings: int | None = Field(None, ge=0)
