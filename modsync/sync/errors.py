"""Error taxonomy for the sync engine.

Local admission denial is *not* an exception: the scheduler reports it as the
``RATE_LIMITED`` fetch outcome.  Everything here describes what went wrong on
the upstream side, split by whether an automatic retry can help.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync engine errors."""


class UpstreamError(SyncError):
    """The upstream metadata source refused or failed a request.

    Attributes:
        status_code: HTTP status returned by the upstream, if any.
        error_code:  Short machine-readable reason.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class UpstreamTransient(UpstreamError):
    """Network error, timeout or 5xx. Worth retrying with backoff."""

    retryable = True


class UpstreamRateLimited(UpstreamTransient):
    """Upstream answered 429.  ``retry_after`` is in seconds when provided."""

    def __init__(self, retry_after: float | None = None) -> None:
        super().__init__(
            "Rate limit exceeded. Please wait before making more requests.",
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
        )
        self.retry_after = retry_after


class UpstreamPermanent(UpstreamError):
    """Not-found, unauthorized and similar. Retrying will not help."""


class UpstreamAuthError(UpstreamPermanent):
    def __init__(self, message: str = "Authentication failed. Please check your API key.") -> None:
        super().__init__(message, status_code=401, error_code="AUTHENTICATION_FAILED")


class UpstreamForbidden(UpstreamPermanent):
    def __init__(
        self, message: str = "Access forbidden. Please check your API key permissions."
    ) -> None:
        super().__init__(message, status_code=403, error_code="ACCESS_FORBIDDEN")


class UpstreamNotFound(UpstreamPermanent):
    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found.", status_code=404, error_code="NOT_FOUND")
