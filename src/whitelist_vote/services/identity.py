"""Identity store: user lookup, registration and role changes."""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Iterable, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whitelist_vote.core.capabilities import VOTING_ROLES, Role
from whitelist_vote.core.errors import DuplicateError, InvalidStateError, NotFoundError
from whitelist_vote.models import User

logger = logging.getLogger(__name__)

__all__ = [
    "get_user",
    "lock_user",
    "lock_users",
    "find_by_external_id",
    "register_user",
    "eligible_voters_query",
    "count_eligible_voters",
    "list_eligible_voters",
    "list_admins",
    "set_role",
    "set_voting_rights",
    "deactivate_user",
    "admit_member",
    "offline_identity_key",
]


def get_user(db: Session, user_id: int) -> User:
    """Return a user by primary key or raise NotFoundError."""
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def lock_user(db: Session, user_id: int) -> User:
    """Return a user with a row-level exclusive lock held until commit."""
    user = (
        db.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def lock_users(db: Session, user_ids: Iterable[int]) -> dict[int, User]:
    """Lock several user rows, always in ascending id order."""
    return {user_id: lock_user(db, user_id) for user_id in sorted(set(user_ids))}


def find_by_external_id(db: Session, external_id: int) -> User | None:
    return db.query(User).filter(User.external_id == external_id).first()


def register_user(
    db: Session,
    external_id: int,
    *,
    handle: str | None = None,
    nickname: str | None = None,
    role: Role = Role.APPLICANT,
    can_vote: bool = False,
) -> User:
    """Persist a new user keyed by their chat platform id."""
    if can_vote and role not in VOTING_ROLES:
        raise InvalidStateError("Only members and admins can vote")

    user = User(
        external_id=external_id,
        handle=handle,
        nickname=nickname,
        role=role,
        can_vote=can_vote,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError as err:
        db.rollback()
        raise DuplicateError(f"User with external id {external_id} already exists") from err

    logger.info("Registered user %s (external id %s, role %s)", user.id, external_id, role.value)
    return user


def eligible_voters_query(db: Session):
    return db.query(User).filter(
        User.can_vote.is_(True),
        User.is_active.is_(True),
        User.role.in_(list(VOTING_ROLES)),
    )


def count_eligible_voters(db: Session) -> int:
    return (
        eligible_voters_query(db)
        .with_entities(func.count(User.id))
        .scalar()
        or 0
    )


def list_eligible_voters(db: Session) -> Sequence[User]:
    return eligible_voters_query(db).order_by(User.id).all()


def list_admins(db: Session) -> Sequence[User]:
    return (
        db.query(User)
        .filter(User.role == Role.ADMIN, User.is_active.is_(True))
        .order_by(User.id)
        .all()
    )


def set_role(db: Session, user_id: int, role: Role, *, can_vote: bool | None = None) -> User:
    """Change a user's role, keeping the voting flag consistent with it."""
    user = lock_user(db, user_id)
    previous = user.role
    user.role = role
    if role not in VOTING_ROLES:
        user.can_vote = False
    elif can_vote is not None:
        user.can_vote = can_vote
    db.flush()
    logger.info(
        "User %s role changed %s -> %s (can_vote=%s)",
        user.id,
        Role(previous).value,
        role.value,
        user.can_vote,
    )
    return user


def set_voting_rights(db: Session, user_id: int, can_vote: bool) -> User:
    user = lock_user(db, user_id)
    if can_vote and Role(user.role) not in VOTING_ROLES:
        raise InvalidStateError("Only members and admins can be granted voting rights")
    user.can_vote = can_vote
    db.flush()
    logger.info("User %s voting rights set to %s", user.id, can_vote)
    return user


def deactivate_user(db: Session, user_id: int) -> User:
    user = lock_user(db, user_id)
    user.is_active = False
    user.can_vote = False
    db.flush()
    logger.info("User %s deactivated", user.id)
    return user


def offline_identity_key(nickname: str) -> str:
    """Return the offline-mode roster UUID for ``nickname``.

    This is the name-based (version 3) UUID of ``OfflinePlayer:<nickname>``
    without a namespace, as used by servers running in offline mode.
    """
    digest = hashlib.md5(f"OfflinePlayer:{nickname}".encode()).digest()
    return str(uuid.UUID(bytes=digest, version=3))


def admit_member(db: Session, user_id: int, nickname: str) -> User:
    """Promote an approved candidate to member with voting rights.

    Users who already hold a voting role keep it; only their roster identity is
    refreshed.
    """
    user = lock_user(db, user_id)
    user.nickname = nickname
    user.identity_key = offline_identity_key(nickname)
    if Role(user.role) is Role.APPLICANT:
        user.role = Role.MEMBER
        user.can_vote = True
    db.flush()
    logger.info("User %s admitted as %s (%s)", user.id, Role(user.role).value, nickname)
    return user
