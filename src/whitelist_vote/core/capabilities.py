"""Role and capability resolution for request actors."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from whitelist_vote.models.user import User


class Role(str, enum.Enum):
    """Community role of a user."""

    APPLICANT = "applicant"
    MEMBER = "member"
    ADMIN = "admin"


VOTING_ROLES = frozenset({Role.MEMBER, Role.ADMIN})


@dataclass(frozen=True)
class ActorCapability:
    """Capabilities of the user performing a request, resolved once per request."""

    user_id: int
    role: Role
    can_vote: bool
    can_manage: bool


def resolve_capability(user: User) -> ActorCapability:
    """Derive the capability set for ``user``.

    Voting requires an active member or admin with the voting flag set;
    management requires an active admin.
    """
    role = Role(user.role)
    active = bool(user.is_active)
    return ActorCapability(
        user_id=user.id,
        role=role,
        can_vote=active and bool(user.can_vote) and role in VOTING_ROLES,
        can_manage=active and role is Role.ADMIN,
    )
