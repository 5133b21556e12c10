# src/whitelist_vote/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .application import (
    ApplicationActionResponse,
    ApplicationCreate,
    ApplicationResolve,
    ApplicationResponse,
    TransitionResponse,
)
from .common import ErrorResponse
from .question import AnswerCreate, QuestionCreate, QuestionResponse
from .reputation import (
    AmnestyAllResponse,
    EjectionResponse,
    RatingCreate,
    RatingRecordResponse,
    RatingResponse,
    ScoreResponse,
)
from .settings import SystemSettingsResponse, SystemSettingsUpdate
from .user import RegisterResponse, RoleChange, UserRegister, UserResponse, VotingRightsChange
from .vote import TallyResponse, VoteCastResponse, VoteCreate, VoteResponse

__all__ = [
    "ApplicationActionResponse", "ApplicationCreate", "ApplicationResolve",
    "ApplicationResponse", "TransitionResponse",
    "ErrorResponse",
    "AnswerCreate", "QuestionCreate", "QuestionResponse",
    "AmnestyAllResponse", "EjectionResponse", "RatingCreate", "RatingRecordResponse",
    "RatingResponse", "ScoreResponse",
    "SystemSettingsResponse", "SystemSettingsUpdate",
    "RegisterResponse", "RoleChange", "UserRegister", "UserResponse", "VotingRightsChange",
    "TallyResponse", "VoteCastResponse", "VoteCreate", "VoteResponse",
]
