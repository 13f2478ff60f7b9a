"""Rate-limited background metadata sync for ModSync.

Modules:
    token_bucket  — Continuously refilled admission gate shared by all fetches
    cache         — In-memory ModRecord store with freshness state
    scheduler     — Single-flight fetches, backoff retries, periodic sweep
    controller    — start/stop/status façade used by HTTP handlers
    channel       — Broadcast channel for pushing status to subscribers
    policy_loader — sync_policy.yaml loading and validation
    errors        — Upstream error taxonomy
"""
