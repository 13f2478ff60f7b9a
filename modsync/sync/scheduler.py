"""Admission, single-flight and retry engine for upstream metadata fetches.

Every fetch, whether a user is waiting on it or the background sweep found a
stale record, goes through the same steps:
1. Reject if the key already has a fetch in flight (single-flight)
2. Ask the shared TokenBucket for one token (non-blocking)
3. Call the upstream source outside any lock
4. Write the result (or the failure) back into the MetadataCache
5. On transient failure, schedule a backoff retry as background priority

There is no queue: on-demand and background callers meet at the same
``try_acquire`` call, so interactive latency depends on token availability
alone.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Awaitable, Callable

from modsync.sync.cache import MetadataCache
from modsync.sync.errors import UpstreamError, UpstreamRateLimited, UpstreamTransient
from modsync.sync.policy_loader import RetryPolicy
from modsync.sync.token_bucket import TokenBucket
from modsync.upstream.base import ModMetadataSource

logger = logging.getLogger("modsync.sync.scheduler")


class Priority(str, Enum):
    ON_DEMAND = "on_demand"
    BACKGROUND = "background"


class FetchOutcome(str, Enum):
    """What happened to a fetch request.

    FETCHED / FAILED:  the upstream was called and the cache updated.
    STARTED:           admitted; the fetch continues in a background task.
    IN_FLIGHT:         another fetch for the key is already running.
    RATE_LIMITED:      no token available; upstream was not contacted.
    """

    FETCHED = "fetched"
    FAILED = "failed"
    STARTED = "started"
    IN_FLIGHT = "in_flight"
    RATE_LIMITED = "rate_limited"


class FetchScheduler:
    """Schedule and execute upstream fetches against a shared token budget.

    The scheduler owns the set of in-flight keys, the retry timers and the
    periodic sweep task.  Bookkeeping is guarded by a lock that is never held
    across an ``await``.

    Usage::

        scheduler = FetchScheduler(
            source=CurseForgeClient(api_key),
            bucket=TokenBucket(60, 1.0),
            cache=MetadataCache(),
            retry=policy.retry,
            ttl_seconds=policy.cache.ttl_seconds,
        )
        outcome = await scheduler.request_fetch("928548", Priority.ON_DEMAND)
        scheduler.start_background_loop(30.0)
    """

    def __init__(
        self,
        source: ModMetadataSource,
        bucket: TokenBucket,
        cache: MetadataCache,
        retry: RetryPolicy,
        ttl_seconds: float,
        retry_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler.

        Args:
            source:      Upstream collaborator providing ``fetch_one``.
            bucket:      Shared admission gate.
            cache:       Record store written after every attempt.
            retry:       Backoff constants and failure ceiling.
            ttl_seconds: Freshness window applied to successful fetches.
            retry_sleep: Awaitable used to wait out backoff delays.
        """
        self._source = source
        self._bucket = bucket
        self._cache = cache
        self._retry = retry
        self._ttl_seconds = ttl_seconds
        self._retry_sleep = retry_sleep

        self._lock = threading.Lock()
        self._pending: set[str] = set()
        # Keys excluded from automatic fetching until their next success
        self._parked: set[str] = set()
        self._retries: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._last_admission_denied = False
        # Cleared by stop_background_loop, set again by start_background_loop
        self._retries_enabled = True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._pending)

    @property
    def parked(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._parked)

    @property
    def scheduled_retries(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._retries)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def rate_limited(self) -> bool:
        """True when the most recent admission attempt was denied."""
        return self._last_admission_denied

    @property
    def bucket(self) -> TokenBucket:
        return self._bucket

    @property
    def cache(self) -> MetadataCache:
        return self._cache

    @property
    def source(self) -> ModMetadataSource:
        return self._source

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def request_fetch(self, key: str, priority: Priority) -> FetchOutcome:
        """Fetch ``key`` now if it is not in flight and a token is available.

        Args:
            key:      External identifier of the record.
            priority: ON_DEMAND for caller-driven reads, BACKGROUND for the
                      sweep and retries.  Both compete for the same tokens.

        Returns:
            IN_FLIGHT, RATE_LIMITED, FETCHED or FAILED.
        """
        denied = self._admit(key, priority)
        if denied is not None:
            return denied
        return await self._attempt(key, priority)

    def submit(self, key: str, priority: Priority) -> FetchOutcome:
        """Admit ``key`` synchronously and run the fetch as a background task.

        Never suspends.  Requires a running event loop.

        Returns:
            STARTED when admitted, otherwise IN_FLIGHT or RATE_LIMITED.
        """
        denied = self._admit(key, priority)
        if denied is not None:
            return denied
        self._spawn(self._attempt(key, priority), name=f"modsync-fetch-{key}")
        return FetchOutcome.STARTED

    def _admit(self, key: str, priority: Priority) -> FetchOutcome | None:
        with self._lock:
            if key in self._pending:
                logger.debug("Fetch %s (%s): already in flight", key, priority.value)
                return FetchOutcome.IN_FLIGHT
            self._pending.add(key)

        if not self._bucket.try_acquire():
            with self._lock:
                self._pending.discard(key)
                self._last_admission_denied = True
            logger.debug("Fetch %s (%s): rate limited", key, priority.value)
            return FetchOutcome.RATE_LIMITED

        with self._lock:
            self._last_admission_denied = False
        self._cache.mark_pending(key)
        return None

    async def _attempt(self, key: str, priority: Priority) -> FetchOutcome:
        try:
            try:
                payload = await self._source.fetch_one(key)
            except UpstreamError as exc:
                self._on_failure(key, exc)
                return FetchOutcome.FAILED
            except Exception as exc:
                logger.exception("Fetch %s: unexpected error from %s", key, self._source_name)
                self._on_failure(key, UpstreamTransient(f"{type(exc).__name__}: {exc}"))
                return FetchOutcome.FAILED

            self._cache.upsert_success(key, payload, self._ttl_seconds)
            with self._lock:
                self._parked.discard(key)
            logger.debug("Fetch %s (%s): fresh", key, priority.value)
            return FetchOutcome.FETCHED
        finally:
            with self._lock:
                self._pending.discard(key)

    def _on_failure(self, key: str, exc: UpstreamError) -> None:
        record = self._cache.mark_failed(key, str(exc))
        failures = record.consecutive_failures

        if not exc.retryable:
            with self._lock:
                self._parked.add(key)
            logger.warning(
                "Fetch %s failed permanently (%s): %s. Not retrying automatically.",
                key, exc.error_code or exc.status_code, exc,
            )
            return

        if failures >= self._retry.max_retries:
            with self._lock:
                self._parked.add(key)
            logger.warning(
                "Fetch %s failed %d times in a row: %s. Giving up until next on-demand request.",
                key, failures, exc,
            )
            return

        if not self._retries_enabled:
            logger.warning("Fetch %s failed: %s. Engine stopped, not retrying.", key, exc)
            return

        delay = self._retry.backoff_delay(failures)
        if isinstance(exc, UpstreamRateLimited) and exc.retry_after:
            delay = max(delay, exc.retry_after)
        logger.warning(
            "Fetch %s failed (%d/%d): %s. Retrying in %.1fs",
            key, failures, self._retry.max_retries, exc, delay,
        )
        self._schedule_retry(key, delay)

    def _schedule_retry(self, key: str, delay: float) -> None:
        task = asyncio.get_running_loop().create_task(
            self._retry_later(key, delay), name=f"modsync-retry-{key}"
        )
        with self._lock:
            previous = self._retries.pop(key, None)
            self._retries[key] = task
        if previous is not None:
            previous.cancel()

    async def _retry_later(self, key: str, delay: float) -> None:
        await self._retry_sleep(delay)
        with self._lock:
            if self._retries.get(key) is asyncio.current_task():
                del self._retries[key]
        if not self._retries_enabled:
            return
        await self.request_fetch(key, Priority.BACKGROUND)

    def _spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def _source_name(self) -> str:
        return self._source.SOURCE_ID or type(self._source).__name__

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    def sweep_once(self) -> int:
        """Start background fetches for stale keys while tokens remain.

        Parked keys and keys waiting on a retry timer are skipped.  Stops as
        soon as the bucket holds less than one token so the sweep never marks
        keys pending only to be denied.

        Returns:
            Number of fetches started.
        """
        started = 0
        for key in self._cache.list_stale(exclude=self._pending):
            if self._bucket.snapshot().tokens < 1:
                break
            with self._lock:
                skip = key in self._parked or key in self._retries
            if skip:
                continue
            if self.submit(key, Priority.BACKGROUND) is FetchOutcome.STARTED:
                started += 1
        return started

    def start_background_loop(
        self, interval_seconds: float, on_tick: Callable[[], None] | None = None
    ) -> bool:
        """Start the periodic sweep.  No-op if already running.

        Args:
            interval_seconds: Delay between sweep ticks.  The first tick runs
                              immediately.
            on_tick:          Called after every tick.

        Returns:
            True if the loop was started by this call.
        """
        if self.running:
            logger.info("Background sweep already running")
            return False
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self._retries_enabled = True
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run_loop(interval_seconds, on_tick), name="modsync-sweep"
        )
        return True

    def stop_background_loop(self) -> bool:
        """Cancel the periodic sweep and pending retry timers.

        In-flight fetches are left to finish, but their failures no longer
        schedule retries until the loop is started again.  No-op if not
        running.

        Returns:
            True if a running loop was stopped by this call.
        """
        self._retries_enabled = False
        with self._lock:
            retries = list(self._retries.values())
            self._retries.clear()
        for task in retries:
            task.cancel()

        task, self._loop_task = self._loop_task, None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _run_loop(self, interval_seconds: float, on_tick: Callable[[], None] | None) -> None:
        logger.info("Background sweep started (every %.1fs)", interval_seconds)
        try:
            while True:
                try:
                    started = self.sweep_once()
                    if started:
                        logger.info("Background sweep: refreshing %d stale record(s)", started)
                    if on_tick is not None:
                        on_tick()
                except Exception:
                    logger.exception("Background sweep tick failed")
                await asyncio.sleep(interval_seconds)
        finally:
            logger.info("Background sweep stopped")

    async def wait_idle(self) -> None:
        """Wait until no fetch is running and no retry timer is pending."""
        while True:
            with self._lock:
                waiting = set(self._tasks) | set(self._retries.values())
            if not waiting:
                return
            await asyncio.gather(*waiting, return_exceptions=True)
