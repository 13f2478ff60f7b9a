"""Tests for MetadataCache freshness tracking and failure bookkeeping."""

from __future__ import annotations

from datetime import timedelta

from modsync.sync.cache import FetchState, MetadataCache

from .conftest import FakeWallClock, mod_payload


class TestUpsertSuccess:
    def test_sets_fresh_state_and_deadline(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        record = cache.upsert_success("100", mod_payload("100"), ttl=60)
        assert record.fetch_state is FetchState.FRESH
        assert record.last_fetched_at == wall.now
        assert record.stale_after == wall.now + timedelta(seconds=60)
        assert record.consecutive_failures == 0
        assert record.last_error is None

    def test_success_clears_failures(self, cache: MetadataCache) -> None:
        cache.mark_failed("100", "boom")
        cache.mark_failed("100", "boom again")
        record = cache.upsert_success("100", mod_payload("100"), ttl=60)
        assert record.consecutive_failures == 0
        assert record.last_error is None

    def test_accepts_timedelta_ttl(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        record = cache.upsert_success("100", {}, ttl=timedelta(hours=1))
        assert record.stale_after == wall.now + timedelta(hours=1)


class TestMarkFailed:
    def test_failed_without_payload(self, cache: MetadataCache) -> None:
        record = cache.mark_failed("100", "HTTP 503")
        assert record.fetch_state is FetchState.FAILED
        assert record.payload is None
        assert record.last_error == "HTTP 503"
        assert record.consecutive_failures == 1

    def test_failure_keeps_known_good_payload(self, cache: MetadataCache) -> None:
        """A failed refresh of a fresh key keeps its payload and becomes Stale."""
        payload = mod_payload("100", "Structures Plus")
        cache.upsert_success("100", payload, ttl=60)
        record = cache.mark_failed("100", "timeout")
        assert record.payload == payload
        assert record.fetch_state is FetchState.STALE
        assert cache.get("100") is not None

    def test_failures_accumulate(self, cache: MetadataCache) -> None:
        for _ in range(3):
            record = cache.mark_failed("100", "boom")
        assert record.consecutive_failures == 3


class TestGet:
    def test_missing_key(self, cache: MetadataCache) -> None:
        assert cache.get("nope") is None

    def test_fresh_becomes_stale_with_time(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        cache.upsert_success("100", {}, ttl=60)
        wall.advance(59)
        assert cache.get("100").fetch_state is FetchState.FRESH
        wall.advance(1)
        assert cache.get("100").fetch_state is FetchState.STALE

    def test_returns_copies(self, cache: MetadataCache) -> None:
        cache.upsert_success("100", {}, ttl=60)
        copy = cache.get("100")
        copy.consecutive_failures = 99
        assert cache.get("100").consecutive_failures == 0


class TestMarkPending:
    def test_creates_pending_record(self, cache: MetadataCache) -> None:
        cache.mark_pending("100")
        assert cache.get("100").fetch_state is FetchState.PENDING

    def test_failed_record_goes_pending(self, cache: MetadataCache) -> None:
        cache.mark_failed("100", "boom")
        cache.mark_pending("100")
        assert cache.get("100").fetch_state is FetchState.PENDING

    def test_record_with_payload_keeps_state(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        cache.upsert_success("100", {}, ttl=60)
        wall.advance(120)
        cache.mark_pending("100")
        assert cache.get("100").fetch_state is FetchState.STALE


class TestListStale:
    def test_lists_only_due_keys(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        cache.upsert_success("1", {}, ttl=10)
        cache.upsert_success("2", {}, ttl=100)
        cache.mark_failed("3", "boom")
        wall.advance(50)
        assert sorted(cache.list_stale()) == ["1", "3"]

    def test_excludes_given_keys(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        cache.upsert_success("1", {}, ttl=10)
        cache.upsert_success("2", {}, ttl=10)
        wall.advance(50)
        assert list(cache.list_stale(exclude={"1"})) == ["2"]

    def test_explicit_reference_time(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        cache.upsert_success("1", {}, ttl=10)
        assert list(cache.list_stale()) == []
        assert list(cache.list_stale(now=wall.now + timedelta(seconds=10))) == ["1"]

    def test_is_lazy_and_restartable(self, cache: MetadataCache, wall: FakeWallClock) -> None:
        cache.upsert_success("1", {}, ttl=10)
        cache.upsert_success("2", {}, ttl=10)
        wall.advance(20)

        stale = cache.list_stale()
        first = next(stale)
        # Refreshing the other key mid-iteration is seen by the same generator
        other = "2" if first == "1" else "1"
        cache.upsert_success(other, {}, ttl=10)
        assert list(stale) == []

        # A new call re-evaluates from scratch
        wall.advance(20)
        assert sorted(cache.list_stale()) == ["1", "2"]
