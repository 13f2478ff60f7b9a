"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException
from fastapi.requests import HTTPConnection

from modsync.config import Settings, get_settings
from modsync.sync.controller import SyncController


def get_sync_controller(connection: HTTPConnection) -> SyncController:
    """Return the engine built by the application lifespan.

    The lifespan stores it on ``app.state.sync``; works for both HTTP and
    WebSocket routes.
    """
    controller: SyncController | None = getattr(connection.app.state, "sync", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Sync engine is not initialised")
    return controller


def get_app_settings(connection: HTTPConnection) -> Settings:
    """Return the settings the app was created with."""
    return getattr(connection.app.state, "settings", None) or get_settings()


# Annotated shortcuts for route signatures
SyncEngine = Annotated[SyncController, Depends(get_sync_controller)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
