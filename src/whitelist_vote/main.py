# src/whitelist_vote/main.py
"""Main entry point for the whitelist voting service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from whitelist_vote.api.v1 import (
    admin_router,
    applications_router,
    reputation_router,
    users_router,
)
from whitelist_vote.api.v1.errors import install_error_handlers
from whitelist_vote.core.settings import settings
from whitelist_vote.services.sweeper import ExpirationSweeper

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Peer-voting engine for server whitelist applications",
    version=settings.app_version,
)

install_error_handlers(app)

# Include API routers
app.include_router(applications_router, prefix="/api/v1")
app.include_router(reputation_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.sweep_enabled:
        sweeper = ExpirationSweeper()
        await sweeper.start()
        app.state.sweeper = sweeper
    else:
        app.state.sweeper = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: ExpirationSweeper | None = getattr(app.state, "sweeper", None)
    if sweeper:
        await sweeper.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "whitelist_vote.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
