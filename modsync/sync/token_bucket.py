"""Continuously refilled token bucket shared by every upstream request.

Refill is computed lazily from elapsed monotonic time on each access; there
is no ticking task.  Admission never blocks: callers get a yes/no answer and
decide for themselves what to do when the budget is exhausted.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class TokenBucketSnapshot:
    """Point-in-time view of the bucket, for status reporting."""

    tokens: float
    capacity: int
    refill_rate_per_second: float


class TokenBucket:
    """Thread-safe token bucket with continuous refill.

    Usage::

        bucket = TokenBucket(capacity=60, refill_rate_per_second=1.0)
        if bucket.try_acquire():
            ...  # allowed to call upstream
    """

    def __init__(
        self,
        capacity: int,
        refill_rate_per_second: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a full bucket.

        Args:
            capacity:               Maximum number of tokens (burst size).
            refill_rate_per_second: Tokens added per second of elapsed time.
            clock:                  Monotonic time source in seconds.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if refill_rate_per_second <= 0:
            raise ValueError(
                f"refill_rate_per_second must be > 0, got {refill_rate_per_second}"
            )
        self._capacity = capacity
        self._rate = float(refill_rate_per_second)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill_at = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def refill_rate_per_second(self) -> float:
        return self._rate

    def _refill(self) -> None:
        # Caller holds self._lock
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill_at)
        self._tokens = min(float(self._capacity), self._tokens + elapsed * self._rate)
        self._last_refill_at = now

    def try_acquire(self, cost: float = 1) -> bool:
        """Take ``cost`` tokens if available.

        Returns:
            True if the tokens were taken; False (state unchanged apart from
            the lazy refill) if the bucket holds fewer than ``cost`` tokens.
        """
        if cost <= 0:
            raise ValueError(f"cost must be > 0, got {cost}")
        with self._lock:
            self._refill()
            if self._tokens >= cost:
                self._tokens -= cost
                return True
            return False

    def snapshot(self) -> TokenBucketSnapshot:
        with self._lock:
            self._refill()
            return TokenBucketSnapshot(
                tokens=self._tokens,
                capacity=self._capacity,
                refill_rate_per_second=self._rate,
            )
