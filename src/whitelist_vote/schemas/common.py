"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body returned for every terminal engine error."""

    detail: str = Field(..., description="Human readable message")
    code: str = Field(..., description="Stable machine readable error code")


class WarningsMixin(BaseModel):
    warnings: list[str] = Field(
        default_factory=list,
        description="Side effects that failed after the decision was saved",
    )
