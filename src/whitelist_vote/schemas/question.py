# src/whitelist_vote/schemas/question.py
"""Question and answer schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class QuestionCreate(BaseModel):
    """A voter's question to the applicant."""

    text: str = Field(..., min_length=1, max_length=1000)


class AnswerCreate(BaseModel):
    answer: str = Field(..., min_length=1, max_length=2000)


class QuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    application_id: int
    asker_id: int
    text: str
    answer: str | None
    answered_at: datetime | None
    created_at: datetime
