# src/whitelist_vote/models/__init__.py
"""SQLAlchemy models for the whitelist voting service."""

from .application import Application, ApplicationStatus, ApplicationTransition, TransitionCause
from .question import Question
from .reputation import ReputationRecord
from .system import SystemSettings
from .user import User
from .vote import Polarity, Vote

__all__ = [
    "Application", "ApplicationStatus", "ApplicationTransition", "TransitionCause",
    "Polarity",
    "Question",
    "ReputationRecord",
    "SystemSettings",
    "User",
    "Vote",
]
