"""Single-producer broadcast channel for pushing engine status.

Consumers subscribe and get their own bounded ``asyncio.Queue``; a slow
consumer loses its oldest items instead of stalling the producer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, TypeVar

logger = logging.getLogger("modsync.sync.channel")

T = TypeVar("T")


class StatusChannel(Generic[T]):
    """Fan out published items to every subscriber queue.

    Usage::

        channel = StatusChannel()
        queue = channel.subscribe()
        try:
            item = await queue.get()
        finally:
            channel.unsubscribe(queue)
    """

    def __init__(self, maxsize: int = 16) -> None:
        self._maxsize = maxsize
        self._subscribers: set[asyncio.Queue[T]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[T]:
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.add(queue)
        logger.debug("Status channel: %d subscriber(s)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[T]) -> None:
        self._subscribers.discard(queue)

    def publish(self, item: T) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()  # drop oldest
            queue.put_nowait(item)
