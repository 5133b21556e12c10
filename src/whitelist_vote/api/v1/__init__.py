# src/whitelist_vote/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    admin_router,
    applications_router,
    reputation_router,
    users_router,
)

__all__ = [
    "admin_router",
    "applications_router",
    "reputation_router",
    "users_router",
]
