"""CurseForge API v1 metadata source.

Environment variables (via Settings):
    CURSEFORGE_API_KEY   — API key sent as ``x-api-key``
    CURSEFORGE_BASE_URL  — API base (default https://api.curseforge.com/v1)

Endpoints used:
    /mods/{modId}        — Mod details (name, summary, files, categories, …)

Status codes are mapped onto the sync engine's error taxonomy so the
scheduler can tell a flaky upstream from a request that will never succeed.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from modsync.sync.errors import (
    UpstreamAuthError,
    UpstreamForbidden,
    UpstreamNotFound,
    UpstreamPermanent,
    UpstreamRateLimited,
    UpstreamTransient,
)
from modsync.upstream.base import ModMetadataSource

logger = logging.getLogger("modsync.upstream.curseforge")

_DEFAULT_BASE_URL = "https://api.curseforge.com/v1"
_USER_AGENT = "ModSync/0.1"
_API_KEY_RE = re.compile(r"^[A-Za-z0-9]+$")
_MIN_API_KEY_LENGTH = 32


@dataclass(frozen=True)
class ApiKeyStatus:
    """Result of checking the configured API key without calling upstream."""

    has_key: bool
    valid_format: bool
    key_length: int
    message: str


@dataclass(frozen=True)
class UpstreamQuota:
    """Quota advertised by the last X-RateLimit-* response headers.

    Attributes:
        remaining: Requests left in the current upstream window.
        reset_at:  Unix time (seconds) when the window resets.
    """

    remaining: int
    reset_at: float


class CurseForgeClient(ModMetadataSource):
    """Fetch mod details from the CurseForge API.

    Usage::

        client = CurseForgeClient(api_key=settings.curseforge_api_key)
        payload = await client.fetch_one("928548")
        await client.aclose()
    """

    SOURCE_ID = "curseforge"

    def __init__(
        self,
        api_key: str,
        base_url: str = _DEFAULT_BASE_URL,
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the client.

        Args:
            api_key:         CurseForge API key.
            base_url:        API base URL without trailing slash.
            timeout_seconds: Per-request timeout for the owned httpx client.
            http_client:     Optional pre-configured httpx client (for testing).
                             Not closed by ``aclose()``.
            clock:           Wall-clock source for quota reset comparisons.
        """
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._clock = clock
        self._quota: UpstreamQuota | None = None

    # ------------------------------------------------------------------
    # ModMetadataSource interface
    # ------------------------------------------------------------------

    async def fetch_one(self, key: str) -> dict:
        """Fetch mod details for a CurseForge mod id.

        Args:
            key: Mod id as a string of digits.

        Returns:
            The ``data`` object of the CurseForge response.
        """
        mod_id = self._parse_mod_id(key)
        body = await self._get(f"/mods/{mod_id}")
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise UpstreamTransient(
                f"Malformed response for mod {mod_id}: missing 'data' object",
                error_code="MALFORMED_RESPONSE",
            )
        logger.debug("CurseForge: fetched mod %s (%s)", mod_id, data.get("name", "?"))
        return data

    def is_rate_limited(self) -> bool:
        if self._quota is None:
            return False
        return self._quota.remaining <= 0 and self._clock() < self._quota.reset_at

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @property
    def quota(self) -> UpstreamQuota | None:
        return self._quota

    def check_api_key(self) -> ApiKeyStatus:
        """Check that an API key is configured and looks well-formed.

        CurseForge keys are alphanumeric and at least 32 characters long.
        """
        key = self._api_key
        if not key:
            return ApiKeyStatus(
                has_key=False,
                valid_format=False,
                key_length=0,
                message="CURSEFORGE_API_KEY is not configured.",
            )
        valid = len(key) >= _MIN_API_KEY_LENGTH and bool(_API_KEY_RE.match(key))
        message = (
            "API key is configured."
            if valid
            else "API key format appears invalid. CurseForge API keys should be "
            "alphanumeric and at least 32 characters long."
        )
        return ApiKeyStatus(has_key=True, valid_format=valid, key_length=len(key), message=message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_mod_id(key: str) -> int:
        try:
            mod_id = int(str(key).strip())
        except ValueError:
            mod_id = 0
        if mod_id <= 0:
            raise UpstreamPermanent(f"Invalid mod ID: {key!r}", error_code="INVALID_MOD_ID")
        return mod_id

    def _build_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "x-api-key": self._api_key,
            "User-Agent": _USER_AGENT,
        }

    async def _get(self, endpoint: str) -> Any:
        """Make an authenticated GET request to the CurseForge API.

        Raises:
            UpstreamAuthError:   No API key, or upstream answered 401.
            UpstreamTransient:   Timeouts, transport errors, 5xx, 429.
            UpstreamPermanent:   Any other non-2xx response.
        """
        if not self._api_key:
            raise UpstreamAuthError("CURSEFORGE_API_KEY not configured")

        url = f"{self._base_url}{endpoint}"
        try:
            response = await self._http_client.get(url, headers=self._build_headers())
        except httpx.TimeoutException as exc:
            raise UpstreamTransient(f"Timeout calling {endpoint}: {exc}", error_code="TIMEOUT") from exc
        except httpx.TransportError as exc:
            raise UpstreamTransient(
                f"Transport error calling {endpoint}: {exc}", error_code="TRANSPORT"
            ) from exc

        self._update_quota(response)
        self._raise_for_status(response)
        return response.json()

    def _update_quota(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        if remaining is None or reset is None:
            return
        try:
            self._quota = UpstreamQuota(remaining=int(remaining), reset_at=float(reset))
        except ValueError:
            logger.debug("CurseForge: unparseable rate limit headers %r/%r", remaining, reset)

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return max(float(value), 0.0)
        except ValueError:
            return None

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise UpstreamRateLimited(retry_after=self._retry_after(response))
        if status == 401:
            raise UpstreamAuthError()
        if status == 403:
            raise UpstreamForbidden()
        if status == 404:
            raise UpstreamNotFound("Mod")

        message = f"HTTP {status}: {response.reason_phrase}"
        try:
            error_body = response.json()
        except ValueError:
            error_body = None
        if isinstance(error_body, dict) and error_body.get("errorMessage"):
            message = str(error_body["errorMessage"])

        if status >= 500:
            raise UpstreamTransient(message, status_code=status)
        raise UpstreamPermanent(message, status_code=status)
