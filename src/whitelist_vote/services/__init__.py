# src/whitelist_vote/services/__init__.py
"""Business logic services for the whitelist voting engine."""

from .engine import VotingEngine, get_voting_engine
from .settings_service import SettingsService
from .sweeper import ExpirationSweeper

__all__ = [
    "VotingEngine",
    "get_voting_engine",
    "SettingsService",
    "ExpirationSweeper",
]
