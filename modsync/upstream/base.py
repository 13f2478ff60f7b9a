"""Interface the sync engine requires from an upstream metadata source.

The engine only ever asks for one resource at a time and only needs to tell
transient failures from permanent ones; everything else (authentication,
pagination, search) stays inside the concrete source.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ModMetadataSource(ABC):
    """Abstract base class for upstream metadata sources.

    Subclasses must implement:
        - fetch_one()

    Optional overrides:
        - is_rate_limited()  (default False)
        - aclose()           (default no-op)
    """

    #: Short slug used in logs and status output.
    SOURCE_ID: str = ""

    @abstractmethod
    async def fetch_one(self, key: str) -> Any:
        """Fetch the current metadata for ``key``.

        Args:
            key: Stable external identifier.

        Returns:
            The payload to cache; opaque to the engine.

        Raises:
            UpstreamTransient: Worth retrying later (network, 5xx, 429).
            UpstreamPermanent: Retrying will not help (404, 401, bad key).
        """

    def is_rate_limited(self) -> bool:
        """True while the upstream has told us our quota is exhausted."""
        return False

    async def aclose(self) -> None:
        """Release any network resources held by the source."""
        return None
