# src/whitelist_vote/api/v1/endpoints/users.py
"""User registration, token issue and role management endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from whitelist_vote.core.capabilities import Role
from whitelist_vote.schemas.user import (
    RegisterResponse,
    RoleChange,
    UserRegister,
    UserResponse,
    VotingRightsChange,
)
from whitelist_vote.services.identity import find_by_external_id

from ..dependencies import (
    ActorDep,
    CurrentUserDep,
    EngineDep,
    SessionDep,
    create_access_token,
    require_registration_secret,
)

router = APIRouter(prefix="/users", tags=["users"])

RegistrationGuard = Annotated[None, Depends(require_registration_secret)]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse)
def register_user(
    payload: UserRegister,
    _guard: RegistrationGuard,
    engine: EngineDep,
    db: SessionDep,
) -> RegisterResponse:
    """Register a chat user as an applicant and return their access token."""
    user = engine.register_user(db, payload.external_id, handle=payload.handle)
    return RegisterResponse(
        user=UserResponse.model_validate(user),
        access_token=create_access_token(user.id),
    )


@router.post("/token", response_model=RegisterResponse)
def issue_token(
    payload: UserRegister,
    _guard: RegistrationGuard,
    db: SessionDep,
) -> RegisterResponse:
    """Issue a fresh access token for an already registered chat user."""
    user = find_by_external_id(db, payload.external_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return RegisterResponse(
        user=UserResponse.model_validate(user),
        access_token=create_access_token(user.id),
    )


@router.get("/me", response_model=UserResponse)
def get_me(current_user: CurrentUserDep) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.put("/{user_id}/role", response_model=UserResponse)
def change_role(
    user_id: int,
    payload: RoleChange,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> UserResponse:
    user = engine.change_role(db, actor, user_id, Role(payload.role), can_vote=payload.can_vote)
    return UserResponse.model_validate(user)


@router.put("/{user_id}/voting-rights", response_model=UserResponse)
def change_voting_rights(
    user_id: int,
    payload: VotingRightsChange,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> UserResponse:
    return UserResponse.model_validate(
        engine.set_voting_rights(db, actor, user_id, payload.can_vote)
    )


@router.delete("/{user_id}", response_model=UserResponse)
def deactivate_user(
    user_id: int,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> UserResponse:
    return UserResponse.model_validate(engine.deactivate_user(db, actor, user_id))
