"""Pydantic models for the background-fetch control surface and mod reads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from modsync.models.base import ModSyncBase
from modsync.sync.cache import FetchState, ModRecord
from modsync.sync.controller import EngineStatus, ModLookup
from modsync.sync.scheduler import FetchOutcome


# ---------- Enums ----------

class BackgroundFetchAction(str, Enum):
    start = "start"
    stop = "stop"


# ---------- Background fetch ----------

class BackgroundFetchRequest(ModSyncBase):
    # Any JSON value is accepted; the handler answers 400 for anything but start/stop
    action: Any = None


class TokenBucketRead(ModSyncBase):
    tokens: float
    capacity: int
    refill_rate_per_second: float


class BackgroundFetchStatus(ModSyncBase):
    is_running: bool
    token_bucket: TokenBucketRead
    can_make_request: bool
    rate_limited: bool

    @classmethod
    def from_status(cls, status: EngineStatus) -> "BackgroundFetchStatus":
        return cls(
            is_running=status.running,
            token_bucket=TokenBucketRead(
                tokens=round(status.tokens_available, 3),
                capacity=status.capacity,
                refill_rate_per_second=status.refill_rate_per_second,
            ),
            can_make_request=status.can_make_request,
            rate_limited=status.rate_limited,
        )


class BackgroundFetchStatusResponse(ModSyncBase):
    success: bool = True
    data: BackgroundFetchStatus


class EngineEvent(BackgroundFetchStatus):
    """Status push sent over the events WebSocket."""

    upstream_rate_limited: bool
    pending: int
    tracked_keys: int

    @classmethod
    def from_status(cls, status: EngineStatus) -> "EngineEvent":
        base = BackgroundFetchStatus.from_status(status)
        return cls(
            **base.model_dump(),
            upstream_rate_limited=status.upstream_rate_limited,
            pending=status.pending,
            tracked_keys=status.tracked_keys,
        )


# ---------- Mod records ----------

class ModSyncStateRead(ModSyncBase):
    key: str
    fetch_state: FetchState
    last_fetched_at: datetime | None = None
    stale_after: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    in_flight: bool = False

    @classmethod
    def from_record(cls, record: ModRecord, in_flight: bool) -> "ModSyncStateRead":
        return cls(
            key=record.key,
            fetch_state=record.fetch_state,
            last_fetched_at=record.last_fetched_at,
            stale_after=record.stale_after,
            last_error=record.last_error,
            consecutive_failures=record.consecutive_failures,
            in_flight=in_flight,
        )


class ModLookupRead(ModSyncBase):
    key: str
    fetch_state: FetchState | None = None
    refreshing: bool = False
    outcome: FetchOutcome | None = None
    payload: Any = None

    @classmethod
    def from_lookup(cls, lookup: ModLookup) -> "ModLookupRead":
        return cls(
            key=lookup.key,
            fetch_state=lookup.fetch_state,
            refreshing=lookup.refreshing,
            outcome=lookup.outcome,
            payload=lookup.payload,
        )


class ModRefreshRead(ModSyncBase):
    success: bool
    outcome: FetchOutcome
    state: ModSyncStateRead | None = None
