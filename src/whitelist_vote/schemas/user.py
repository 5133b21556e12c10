"""User-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from whitelist_vote.core.capabilities import Role


class UserRegister(BaseModel):
    """Registration request sent by the chat front end."""

    external_id: int = Field(..., description="Chat platform user id")
    handle: str | None = Field(None, max_length=64)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: int
    handle: str | None
    nickname: str | None
    identity_key: str | None
    role: Role
    can_vote: bool
    is_active: bool
    reputation_positive: float
    reputation_negative: float
    created_at: datetime


class RegisterResponse(BaseModel):
    user: UserResponse
    access_token: str
    token_type: str = "bearer"


class RoleChange(BaseModel):
    role: Literal["applicant", "member", "admin"]
    can_vote: bool | None = None


class VotingRightsChange(BaseModel):
    can_vote: bool
