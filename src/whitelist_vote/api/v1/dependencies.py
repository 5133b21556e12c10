"""Shared API dependencies for authentication and engine access."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import ActorCapability, resolve_capability
from whitelist_vote.core.settings import settings
from whitelist_vote.db.session import get_db
from whitelist_vote.models import User
from whitelist_vote.services.engine import VotingEngine, get_voting_engine

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def create_access_token(user_id: int, extra_claims: dict[str, str] | None = None) -> str:
    """Create JWT access token whose subject is the user id."""
    to_encode: dict[str, object] = {"sub": str(user_id)}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from the bearer JWT.

    Raises:
        HTTPException: If the token is invalid or the user does not exist
    """
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.get(User, int(subject))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_actor(user: CurrentUserDep) -> ActorCapability:
    """Resolve the caller's capabilities once per request."""
    return resolve_capability(user)


ActorDep = Annotated[ActorCapability, Depends(get_actor)]


def get_engine_dep() -> VotingEngine:
    return get_voting_engine()


EngineDep = Annotated[VotingEngine, Depends(get_engine_dep)]


def require_registration_secret(
    x_registration_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Guard the endpoints used by the trusted chat front end."""
    if settings.registration_secret and x_registration_secret != settings.registration_secret:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid registration secret",
        )
