"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from modsync.dependencies import AppSettings, SyncEngine
from modsync.sync.controller import EngineStatus
from modsync.upstream.curseforge import CurseForgeClient

router = APIRouter(tags=["system"])
logger = logging.getLogger("modsync.health")

_LOW_TOKEN_RATIO = 0.2


def _check(status: str, message: str, **details: Any) -> dict:
    return {"status": status, "message": message, "details": details}


def _check_api_key(engine: SyncEngine) -> dict:
    source = engine.source
    if not isinstance(source, CurseForgeClient):
        return _check("pass", f"Using custom source {type(source).__name__}")
    key = source.check_api_key()
    details = {"hasKey": key.has_key, "validFormat": key.valid_format, "keyLength": key.key_length}
    if not key.has_key or not key.valid_format:
        return _check("fail", key.message, **details)
    return _check("pass", key.message, **details)


def _check_rate_limiting(status: EngineStatus) -> dict:
    details = {
        "tokens": round(status.tokens_available, 3),
        "capacity": status.capacity,
        "rateLimited": status.rate_limited,
        "upstreamRateLimited": status.upstream_rate_limited,
    }
    if status.upstream_rate_limited:
        return _check("fail", "Currently rate limited by upstream", **details)
    if not status.can_make_request:
        return _check("warn", "Token bucket is empty", **details)
    if status.tokens_available < status.capacity * _LOW_TOKEN_RATIO:
        return _check("warn", "Token bucket is running low", **details)
    return _check("pass", "Rate limiting is healthy", **details)


def _check_background_fetch(status: EngineStatus) -> dict:
    if not status.running:
        return _check("warn", "Background mod fetching is not running", running=False)
    return _check("pass", "Background mod fetching is running", running=True)


def _overall(checks: dict[str, dict]) -> str:
    statuses = {c["status"] for c in checks.values()}
    if "fail" in statuses:
        return "unhealthy"
    if "warn" in statuses:
        return "degraded"
    return "healthy"


@router.get("/health")
async def health_check(engine: SyncEngine, settings: AppSettings) -> JSONResponse:
    """Liveness probe with a summary of the sync engine.

    Returns 503 when any check fails, 200 otherwise.
    """
    status = engine.status()
    checks = {
        "apiKey": _check_api_key(engine),
        "rateLimiting": _check_rate_limiting(status),
        "backgroundFetch": _check_background_fetch(status),
    }
    overall = _overall(checks)
    if overall != "healthy":
        logger.warning(
            "Health check %s: %s",
            overall,
            ", ".join(f"{name}={c['status']}" for name, c in checks.items() if c["status"] != "pass"),
        )

    body = {
        "status": overall,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "metrics": {
            "tokenBucket": {
                "tokens": round(status.tokens_available, 3),
                "capacity": status.capacity,
                "refillRatePerSecond": status.refill_rate_per_second,
            },
            "pending": status.pending,
            "trackedKeys": status.tracked_keys,
        },
    }
    return JSONResponse(status_code=503 if overall == "unhealthy" else 200, content=body)
