"""Fixtures for HTTP route tests: an app wired to a fake upstream."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from modsync.config import Settings
from modsync.main import create_app
from modsync.sync.cache import MetadataCache
from modsync.sync.controller import SyncController
from modsync.sync.policy_loader import RetryPolicy
from modsync.sync.scheduler import FetchScheduler
from modsync.sync.tests.conftest import FakeMonotonic, FakeSource
from modsync.sync.token_bucket import TokenBucket


@pytest.fixture
def mono() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def controller(source: FakeSource, mono: FakeMonotonic) -> SyncController:
    scheduler = FetchScheduler(
        source=source,
        bucket=TokenBucket(capacity=3, refill_rate_per_second=0.5, clock=mono),
        cache=MetadataCache(),
        retry=RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=300.0, max_retries=3),
        ttl_seconds=3600,
    )
    return SyncController(scheduler, sweep_interval_seconds=3600)


@pytest.fixture
def client(controller: SyncController) -> Iterator[TestClient]:
    app = create_app(settings=Settings(sync_autostart=False), controller=controller)
    with TestClient(app) as test_client:
        yield test_client
