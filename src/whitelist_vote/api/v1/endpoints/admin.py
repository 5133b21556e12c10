"""Administrator endpoints for system settings."""

from __future__ import annotations

from fastapi import APIRouter

from whitelist_vote.schemas.settings import SystemSettingsResponse, SystemSettingsUpdate
from whitelist_vote.services.settings_service import SettingsSnapshot

from ..dependencies import ActorDep, EngineDep, SessionDep
from ..errors import invalid_input

router = APIRouter(prefix="/admin", tags=["admin"])


def _settings_response(snapshot: SettingsSnapshot) -> SystemSettingsResponse:
    return SystemSettingsResponse.model_validate(snapshot)


@router.get("/settings", response_model=SystemSettingsResponse)
def get_settings(
    _actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> SystemSettingsResponse:
    return _settings_response(engine.get_settings(db))


@router.patch("/settings", response_model=SystemSettingsResponse)
def update_settings(
    payload: SystemSettingsUpdate,
    actor: ActorDep,
    engine: EngineDep,
    db: SessionDep,
) -> SystemSettingsResponse:
    """Change voting and rating thresholds; the window is normalised to d/h/m."""
    changes = payload.model_dump(exclude_unset=True, exclude={"voting_duration"})
    duration = payload.voting_duration
    try:
        snapshot = engine.update_settings(
            db,
            actor,
            voting_duration=(
                (duration.days, duration.hours, duration.minutes) if duration else None
            ),
            **changes,
        )
    except ValueError as err:
        raise invalid_input(err) from err
    return _settings_response(snapshot)
