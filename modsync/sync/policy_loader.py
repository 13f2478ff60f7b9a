"""Load, validate, and hot-reload the background sync policy.

The policy lives in ``sync_policy.yaml`` alongside this module.  At startup it
is loaded once and cached.  Call ``reload_sync_policy()`` to re-read from disk
after an admin update; engines built afterwards pick up the new values.

Usage::

    from modsync.sync.policy_loader import get_sync_policy

    policy = get_sync_policy()
    policy.token_bucket.capacity          # 60
    policy.retry.backoff_delay(2)         # 4.0
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("modsync.sync.policy")

# Path to the YAML file sitting next to this module
_POLICY_PATH = Path(__file__).parent / "sync_policy.yaml"


# ---------------------------------------------------------------------------
# Typed policy sections
# ---------------------------------------------------------------------------


@dataclass
class TokenBucketPolicy:
    """Size and refill speed of the shared request budget."""

    capacity: int
    refill_rate_per_second: float


@dataclass
class CachePolicy:
    """Freshness window for fetched records."""

    ttl_seconds: float


@dataclass
class RetryPolicy:
    """Exponential backoff for transient upstream failures."""

    base_delay_seconds: float
    max_delay_seconds: float
    max_retries: int

    def backoff_delay(self, consecutive_failures: int) -> float:
        """Return the delay before the next automatic retry.

        Args:
            consecutive_failures: Failures recorded so far for the key (≥ 1).

        Returns:
            ``base × 2^failures`` seconds, capped at ``max_delay_seconds``.
        """
        exponent = max(consecutive_failures, 0)
        # Cap the exponent so huge failure counts cannot overflow the float
        delay = self.base_delay_seconds * (2 ** min(exponent, 62))
        return min(delay, self.max_delay_seconds)


@dataclass
class SweepPolicy:
    """Periodic background refresh settings."""

    interval_seconds: float
    autostart: bool


@dataclass
class SyncPolicy:
    """Complete, validated sync policy.

    This is the single in-memory representation of sync_policy.yaml.  The
    engine factory reads every tunable from this object.

    Attributes:
        version:      Policy schema version string.
        token_bucket: Shared request budget.
        cache:        Record freshness window.
        retry:        Backoff and failure ceiling.
        sweep:        Background loop cadence.
    """

    version: str
    token_bucket: TokenBucketPolicy
    cache: CachePolicy
    retry: RetryPolicy
    sweep: SweepPolicy


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class PolicyValidationError(ValueError):
    """Raised when sync_policy.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        PolicyValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync policy not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise PolicyValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncPolicy:
    """Validate the raw YAML dict and construct a SyncPolicy.

    Missing keys fall back to defaults; present keys must be well-typed and
    in range.  Every problem is collected before raising.

    Raises:
        PolicyValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _section(name: str) -> dict:
        value = raw.get(name) or {}
        if not isinstance(value, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    def _number(section: dict, name: str, key: str, default: float, *, minimum: float,
                strict: bool = False, integer: bool = False) -> Any:
        value = section.get(key, default)
        try:
            num = int(value) if integer else float(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default
        if num < minimum or (strict and num == minimum):
            bound = ">" if strict else ">="
            errors.append(f"{name}.{key} = {num} must be {bound} {minimum}")
        return num

    version = str(raw.get("version", "1.0"))

    # ── Token bucket ──
    tb_raw = _section("token_bucket")
    token_bucket = TokenBucketPolicy(
        capacity=_number(tb_raw, "token_bucket", "capacity", 60, minimum=1, integer=True),
        refill_rate_per_second=_number(
            tb_raw, "token_bucket", "refill_rate_per_second", 1.0, minimum=0.0, strict=True
        ),
    )

    # ── Cache ──
    cache_raw = _section("cache")
    cache = CachePolicy(
        ttl_seconds=_number(cache_raw, "cache", "ttl_seconds", 86400, minimum=0.0, strict=True),
    )

    # ── Retry ──
    retry_raw = _section("retry")
    retry = RetryPolicy(
        base_delay_seconds=_number(
            retry_raw, "retry", "base_delay_seconds", 1.0, minimum=0.0, strict=True
        ),
        max_delay_seconds=_number(
            retry_raw, "retry", "max_delay_seconds", 300.0, minimum=0.0, strict=True
        ),
        max_retries=_number(retry_raw, "retry", "max_retries", 3, minimum=0, integer=True),
    )
    if retry.max_delay_seconds < retry.base_delay_seconds:
        errors.append(
            f"retry.max_delay_seconds ({retry.max_delay_seconds}) is below "
            f"retry.base_delay_seconds ({retry.base_delay_seconds})"
        )

    # ── Sweep ──
    sweep_raw = _section("sweep")
    sweep = SweepPolicy(
        interval_seconds=_number(
            sweep_raw, "sweep", "interval_seconds", 30.0, minimum=0.0, strict=True
        ),
        autostart=bool(sweep_raw.get("autostart", False)),
    )

    if errors:
        raise PolicyValidationError(
            f"sync_policy.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncPolicy(
        version=version,
        token_bucket=token_bucket,
        cache=cache,
        retry=retry,
        sweep=sweep,
    )


def load_sync_policy(path: Path | None = None) -> SyncPolicy:
    """Load and validate the sync policy from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_policy.yaml by default.

    Returns:
        Validated SyncPolicy instance.
    """
    target = path or _POLICY_PATH
    raw = _load_yaml(target)
    policy = _validate_and_build(raw)
    logger.info("Loaded sync policy v%s from %s", policy.version, target)
    return policy


# ---------------------------------------------------------------------------
# Process-wide cached policy with hot-reload support
# ---------------------------------------------------------------------------

_policy: SyncPolicy | None = None
_policy_lock = threading.Lock()


def get_sync_policy(path: Path | None = None) -> SyncPolicy:
    """Return the cached SyncPolicy, loading it on first call.

    Thread-safe.  ``path`` is only honoured on the first load; use
    ``reload_sync_policy()`` to switch files afterwards.
    """
    global _policy
    if _policy is None:
        with _policy_lock:
            if _policy is None:  # double-checked locking
                _policy = load_sync_policy(path)
    return _policy


def reload_sync_policy(path: Path | None = None) -> SyncPolicy:
    """Reload the policy from disk and replace the cached instance.

    If validation fails, the old policy is retained and the error is re-raised.

    Raises:
        PolicyValidationError: If the new policy is invalid.
        FileNotFoundError:     If the policy file is missing.
    """
    global _policy
    new_policy = load_sync_policy(path)  # validate before acquiring lock
    with _policy_lock:
        old_version = _policy.version if _policy else "none"
        _policy = new_policy
    logger.info("Reloaded sync policy: %s → %s", old_version, new_policy.version)
    return new_policy
