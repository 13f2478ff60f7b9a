"""ModSync API — FastAPI application entry point.

Run locally:
    uvicorn modsync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modsync.config import Settings, get_settings
from modsync.routers import background_fetch, health, mods
from modsync.sync.controller import SyncController, build_sync_controller
from modsync.sync.policy_loader import get_sync_policy
from modsync.upstream.base import ModMetadataSource

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("modsync")


# ---------- Lifespan ----------

def _make_lifespan(
    settings: Settings,
    controller: SyncController | None,
    source: ModMetadataSource | None,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup / shutdown hooks.

        The engine is built here, the application's composition root, and
        handed to route handlers through ``app.state.sync``.
        """
        logger.info(
            "Starting ModSync API v%s [%s]",
            settings.app_version,
            settings.environment,
        )
        engine = controller
        if engine is None:
            policy_path = Path(settings.sync_policy_path) if settings.sync_policy_path else None
            policy = get_sync_policy(policy_path)
            engine = build_sync_controller(settings, policy, source=source)
            autostart = (
                settings.sync_autostart
                if settings.sync_autostart is not None
                else policy.sweep.autostart
            )
        else:
            autostart = bool(settings.sync_autostart)
        app.state.sync = engine
        if autostart:
            engine.start()
        yield
        await engine.aclose()
        app.state.sync = None
        logger.info("ModSync API shut down")

    return lifespan


# ---------- App factory ----------

def create_app(
    settings: Settings | None = None,
    controller: SyncController | None = None,
    source: ModMetadataSource | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        settings:   Settings override (defaults to the environment).
        controller: Pre-built engine; skips policy loading (tests).
        source:     Upstream override used when building the engine.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description=(
            "Rate-limited background sync of CurseForge mod metadata: cached "
            "reads, background refresh and a start/stop/status control surface."
        ),
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=_make_lifespan(settings, controller, source),
    )

    app.state.settings = settings

    # CORS for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(background_fetch.router, prefix=v1_prefix)
    app.include_router(mods.router, prefix=v1_prefix)

    return app


app = create_app()
