"""Process-level façade over the sync engine.

HTTP handlers and UI polling talk to a SyncController only.  It is built
once by the application's composition root (see ``build_sync_controller``)
and handed to handlers by reference; nothing here is a module global.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from modsync.config import Settings
from modsync.sync.cache import FetchState, MetadataCache, ModRecord
from modsync.sync.channel import StatusChannel
from modsync.sync.policy_loader import SyncPolicy
from modsync.sync.scheduler import FetchOutcome, FetchScheduler, Priority
from modsync.sync.token_bucket import TokenBucket
from modsync.upstream.base import ModMetadataSource
from modsync.upstream.curseforge import CurseForgeClient

logger = logging.getLogger("modsync.sync.controller")


@dataclass(frozen=True)
class EngineStatus:
    """Derived engine state; never stored.

    Attributes:
        running:                Background sweep is active.
        tokens_available:       Current bucket level.
        capacity:               Bucket size.
        refill_rate_per_second: Bucket refill speed.
        rate_limited:           The last admission attempt was denied.
        can_make_request:       At least one whole token is available.
        upstream_rate_limited:  Upstream quota headers report exhaustion.
        pending:                Fetches currently in flight.
        tracked_keys:           Records held in the cache.
    """

    running: bool
    tokens_available: float
    capacity: int
    refill_rate_per_second: float
    rate_limited: bool
    can_make_request: bool
    upstream_rate_limited: bool
    pending: int
    tracked_keys: int

    def summary(self) -> tuple[bool, bool, bool]:
        """Coarse view used to decide whether subscribers need an update."""
        return (self.running, self.rate_limited, self.can_make_request)


@dataclass(frozen=True)
class ModLookup:
    """Answer to a read-through lookup.

    ``payload`` is None when nothing has been fetched yet; ``refreshing`` is
    True when a fetch for the key is running (started by this call or earlier).
    """

    key: str
    payload: Any
    fetch_state: FetchState | None
    refreshing: bool
    outcome: FetchOutcome | None = None

    @property
    def found(self) -> bool:
        return self.payload is not None


class SyncController:
    """Start/stop/status façade and read-through cache access.

    Usage::

        controller = build_sync_controller(settings, policy)
        controller.start()
        lookup = controller.get_or_refresh("928548")
        status = controller.status()
    """

    def __init__(self, scheduler: FetchScheduler, sweep_interval_seconds: float) -> None:
        self._scheduler = scheduler
        self._sweep_interval = sweep_interval_seconds
        self._channel: StatusChannel[EngineStatus] = StatusChannel()
        self._last_published: tuple[bool, bool, bool] | None = None

    @property
    def scheduler(self) -> FetchScheduler:
        return self._scheduler

    @property
    def source(self) -> ModMetadataSource:
        return self._scheduler.source

    @property
    def running(self) -> bool:
        return self._scheduler.running

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_or_refresh(self, key: str) -> ModLookup:
        """Return whatever is cached for ``key`` and refresh it if needed.

        Never waits on the network.  A stale or missing record triggers an
        on-demand fetch in the background so the next read is fresher;
        failures end up on the record, never in the caller.  Must be called
        from within the running event loop.
        """
        record = self._scheduler.cache.get(key)
        outcome: FetchOutcome | None = None
        if record is None or record.fetch_state is not FetchState.FRESH:
            outcome = self._scheduler.submit(key, Priority.ON_DEMAND)
            if outcome is not FetchOutcome.STARTED:
                logger.debug("Read-through refresh of %s: %s", key, outcome.value)
            # A new key only gets a record once its fetch is admitted
            record = self._scheduler.cache.get(key) or record

        return ModLookup(
            key=key,
            payload=record.payload if record else None,
            fetch_state=record.fetch_state if record else None,
            refreshing=key in self._scheduler.pending,
            outcome=outcome,
        )

    async def refresh(self, key: str) -> FetchOutcome:
        """Fetch ``key`` on demand and wait for the attempt to finish."""
        return await self._scheduler.request_fetch(key, Priority.ON_DEMAND)

    def record(self, key: str) -> ModRecord | None:
        return self._scheduler.cache.get(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start background refresh.  Idempotent.

        Returns:
            True if this call changed the state.
        """
        started = self._scheduler.start_background_loop(
            self._sweep_interval, on_tick=self._publish_if_changed
        )
        if started:
            logger.info("Background mod fetching service started")
            self._publish(force=True)
        return started

    def stop(self) -> bool:
        """Stop background refresh.  Idempotent; in-flight fetches finish."""
        stopped = self._scheduler.stop_background_loop()
        if stopped:
            logger.info("Background mod fetching service stopped")
            self._publish(force=True)
        return stopped

    async def aclose(self) -> None:
        """Stop, let in-flight fetches finish and release the source."""
        self.stop()
        await self._scheduler.wait_idle()
        await self._scheduler.source.aclose()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> EngineStatus:
        snapshot = self._scheduler.bucket.snapshot()
        return EngineStatus(
            running=self._scheduler.running,
            tokens_available=snapshot.tokens,
            capacity=snapshot.capacity,
            refill_rate_per_second=snapshot.refill_rate_per_second,
            rate_limited=self._scheduler.rate_limited,
            can_make_request=snapshot.tokens >= 1,
            upstream_rate_limited=self._scheduler.source.is_rate_limited(),
            pending=len(self._scheduler.pending),
            tracked_keys=len(self._scheduler.cache),
        )

    def subscribe(self) -> asyncio.Queue[EngineStatus]:
        """Subscribe to status pushes.  Call ``unsubscribe`` when done."""
        return self._channel.subscribe()

    def unsubscribe(self, queue: asyncio.Queue[EngineStatus]) -> None:
        self._channel.unsubscribe(queue)

    def _publish_if_changed(self) -> None:
        self._publish(force=False)

    def _publish(self, force: bool) -> None:
        status = self.status()
        summary = status.summary()
        if not force and summary == self._last_published:
            return
        self._last_published = summary
        self._channel.publish(status)


# ---------------------------------------------------------------------------
# Composition root helper
# ---------------------------------------------------------------------------


def build_sync_controller(
    settings: Settings,
    policy: SyncPolicy,
    source: ModMetadataSource | None = None,
) -> SyncController:
    """Wire a complete engine from configuration.

    Args:
        settings: Application settings (API key, base URL, timeouts).
        policy:   Sync policy (bucket, TTL, backoff, sweep interval).
        source:   Upstream override; defaults to a CurseForgeClient.

    Returns:
        A stopped SyncController.
    """
    if source is None:
        source = CurseForgeClient(
            api_key=settings.curseforge_api_key,
            base_url=settings.curseforge_base_url,
            timeout_seconds=settings.upstream_timeout_seconds,
        )
    bucket = TokenBucket(
        capacity=policy.token_bucket.capacity,
        refill_rate_per_second=policy.token_bucket.refill_rate_per_second,
    )
    scheduler = FetchScheduler(
        source=source,
        bucket=bucket,
        cache=MetadataCache(),
        retry=policy.retry,
        ttl_seconds=policy.cache.ttl_seconds,
    )
    return SyncController(scheduler, sweep_interval_seconds=policy.sweep.interval_seconds)
