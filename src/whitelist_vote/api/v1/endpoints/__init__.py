# src/whitelist_vote/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .admin import router as admin_router
from .applications import router as applications_router
from .reputation import router as reputation_router
from .users import router as users_router

__all__ = [
    "admin_router",
    "applications_router",
    "reputation_router",
    "users_router",
]
