"""In-memory cache of fetched mod metadata with freshness tracking.

Records are never evicted and a failed refresh never deletes a previously
fetched payload: stale-but-present always wins over empty.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Container, Iterator

logger = logging.getLogger("modsync.sync.cache")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FetchState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class ModRecord:
    """One cached upstream resource.

    Attributes:
        key:                  Stable external identifier (CurseForge mod id).
        payload:              Last successfully fetched metadata, opaque here.
        fetch_state:          Current FetchState.
        last_fetched_at:      UTC time of the last successful fetch.
        stale_after:          UTC time after which the payload counts as stale.
        last_error:           Last failure reason; cleared on success.
        consecutive_failures: Failures since the last success; drives backoff.
    """

    key: str
    payload: Any = None
    fetch_state: FetchState = FetchState.PENDING
    last_fetched_at: datetime | None = None
    stale_after: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0

    @property
    def has_payload(self) -> bool:
        return self.last_fetched_at is not None

    def is_due(self, now: datetime) -> bool:
        """True when the record needs a refresh at ``now``."""
        return self.stale_after is None or self.stale_after <= now


class MetadataCache:
    """Thread-safe keyed store of ModRecords.

    All mutation goes through the methods below; ``get`` hands out copies so
    no caller can modify a record behind the cache's back.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._records: dict[str, ModRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def _age(self, record: ModRecord, now: datetime) -> None:
        # Fresh → Stale is time based and applied lazily; caller holds the lock
        if record.fetch_state is FetchState.FRESH and record.is_due(now):
            record.fetch_state = FetchState.STALE

    def get(self, key: str) -> ModRecord | None:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            self._age(record, self._clock())
            return replace(record)

    def mark_pending(self, key: str) -> None:
        """Note that a fetch for ``key`` was admitted.

        Creates the record on first use.  Records that already hold a payload
        keep their Fresh/Stale state so reads stay meaningful while the
        refresh is in flight.
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                self._records[key] = ModRecord(key=key)
            elif not record.has_payload:
                record.fetch_state = FetchState.PENDING

    def upsert_success(self, key: str, payload: Any, ttl: float | timedelta) -> ModRecord:
        """Store a freshly fetched payload and reset failure tracking."""
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        with self._lock:
            now = self._clock()
            record = self._records.setdefault(key, ModRecord(key=key))
            record.payload = payload
            record.fetch_state = FetchState.FRESH
            record.last_fetched_at = now
            record.stale_after = now + ttl
            record.consecutive_failures = 0
            record.last_error = None
            return replace(record)

    def mark_failed(self, key: str, error: str) -> ModRecord:
        """Record a failed fetch attempt.

        The payload is kept.  A record that has never been fetched becomes
        Failed; one with a payload is downgraded to Stale.

        Returns:
            A copy of the updated record.
        """
        with self._lock:
            record = self._records.setdefault(key, ModRecord(key=key))
            record.consecutive_failures += 1
            record.last_error = error
            record.fetch_state = FetchState.STALE if record.has_payload else FetchState.FAILED
            logger.debug(
                "Cache: %s failed (%d consecutive): %s",
                key, record.consecutive_failures, error,
            )
            return replace(record)

    def list_stale(
        self, now: datetime | None = None, exclude: Container[str] = ()
    ) -> Iterator[str]:
        """Yield keys due for a refresh.

        A generator: every call re-evaluates from scratch and each key is
        checked at the moment it is yielded, so a long sweep never acts on a
        decision made before the previous key's fetch changed the cache.

        Args:
            now:     Reference time (defaults to the cache clock).
            exclude: Keys to skip, normally the scheduler's in-flight set.
        """
        for key in self.keys():
            if key in exclude:
                continue
            with self._lock:
                record = self._records.get(key)
                if record is None:
                    continue
                at = now or self._clock()
                self._age(record, at)
                due = record.is_due(at)
            if due:
                yield key
