"""Shared fixtures and fakes for sync engine tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from modsync.sync.cache import MetadataCache
from modsync.sync.controller import SyncController
from modsync.sync.policy_loader import RetryPolicy
from modsync.sync.scheduler import FetchScheduler
from modsync.sync.token_bucket import TokenBucket
from modsync.upstream.base import ModMetadataSource

START = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Controllable clocks
# ---------------------------------------------------------------------------


class FakeMonotonic:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """UTC wall clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Upstream fake
# ---------------------------------------------------------------------------


class FakeSource(ModMetadataSource):
    """Upstream source backed by an AsyncMock so tests can script outcomes."""

    SOURCE_ID = "fake"

    def __init__(self) -> None:
        self.fetch_mock = AsyncMock(side_effect=lambda key: {"id": key, "name": f"Mod {key}"})
        self.closed = False

    async def fetch_one(self, key: str) -> Any:
        return await self.fetch_mock(key)

    async def aclose(self) -> None:
        self.closed = True


def mod_payload(key: str, name: str | None = None) -> dict:
    return {"id": int(key), "name": name or f"Mod {key}"}


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mono() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def wall() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def retry_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=300.0, max_retries=3)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def bucket(mono: FakeMonotonic) -> TokenBucket:
    return TokenBucket(capacity=5, refill_rate_per_second=1.0, clock=mono)


@pytest.fixture
def cache(wall: FakeWallClock) -> MetadataCache:
    return MetadataCache(clock=wall)


@pytest.fixture
def scheduler(
    source: FakeSource,
    bucket: TokenBucket,
    cache: MetadataCache,
    retry_policy: RetryPolicy,
    retry_sleep: RecordingSleep,
) -> FetchScheduler:
    return FetchScheduler(
        source=source,
        bucket=bucket,
        cache=cache,
        retry=retry_policy,
        ttl_seconds=3600,
        retry_sleep=retry_sleep,
    )


@pytest.fixture
def controller(scheduler: FetchScheduler) -> SyncController:
    return SyncController(scheduler, sweep_interval_seconds=3600)
