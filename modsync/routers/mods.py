"""Read-through access to cached CurseForge mod metadata."""

from __future__ import annotations

import math
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from modsync.dependencies import SyncEngine
from modsync.models.sync import ModLookupRead, ModRefreshRead, ModSyncStateRead
from modsync.sync.scheduler import FetchOutcome

router = APIRouter(prefix="/curseforge/mods", tags=["mods"])


@router.get(
    "/{mod_id}",
    response_model=ModLookupRead,
    responses={202: {"model": ModLookupRead}},
)
async def get_mod(mod_id: int, engine: SyncEngine) -> Any:
    """Return cached metadata, refreshing it in the background when stale.

    Answers 202 with an empty payload while the first fetch is pending.
    """
    lookup = engine.get_or_refresh(str(mod_id))
    body = ModLookupRead.from_lookup(lookup)
    if not lookup.found:
        return JSONResponse(status_code=202, content=body.model_dump(mode="json", by_alias=True))
    return body


@router.get("/{mod_id}/sync-state", response_model=ModSyncStateRead)
async def get_mod_sync_state(mod_id: int, engine: SyncEngine) -> Any:
    key = str(mod_id)
    record = engine.record(key)
    if record is None:
        raise HTTPException(status_code=404, detail="Mod is not tracked")
    return ModSyncStateRead.from_record(record, in_flight=key in engine.scheduler.pending)


@router.post("/{mod_id}/refresh", response_model=ModRefreshRead)
async def refresh_mod(mod_id: int, engine: SyncEngine) -> Any:
    """Fetch a mod now, waiting for the upstream round trip.

    Also the way to revive a key the scheduler gave up on.
    """
    key = str(mod_id)
    outcome = await engine.refresh(key)
    record = engine.record(key)
    body = ModRefreshRead(
        success=outcome is FetchOutcome.FETCHED,
        outcome=outcome,
        state=(
            ModSyncStateRead.from_record(record, in_flight=key in engine.scheduler.pending)
            if record
            else None
        ),
    )
    if outcome is FetchOutcome.RATE_LIMITED:
        return JSONResponse(
            status_code=429,
            content=body.model_dump(mode="json", by_alias=True),
            headers={"Retry-After": str(_seconds_until_token(engine))},
        )
    return body


def _seconds_until_token(engine: SyncEngine) -> int:
    snapshot = engine.scheduler.bucket.snapshot()
    missing = max(1.0 - snapshot.tokens, 0.0)
    return max(1, math.ceil(missing / snapshot.refill_rate_per_second))
