"""Tests for the principal cache and attempt limiter."""

import pytest

from salon_scheduler.services.access import AttemptLimiter, TTLCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTTLCache:
    def test_entry_expires(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=300, clock=clock)
        cache.set("a", 1)

        clock.advance(299)
        assert cache.get("a") == 1
        clock.advance(1)
        assert cache.get("a") is None

    def test_oldest_entry_evicted_when_full(self):
        cache = TTLCache(ttl_seconds=300, max_entries=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_rewrite_refreshes_position(self):
        cache = TTLCache(ttl_seconds=300, max_entries=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=0)


class TestAttemptLimiter:
    def test_blocks_after_limit(self):
        limiter = AttemptLimiter(limit=5, window_seconds=60, clock=FakeClock())
        assert all(limiter.hit("1.2.3.4") for _ in range(5))
        assert limiter.hit("1.2.3.4") is False
        assert limiter.is_blocked("1.2.3.4") is True
        assert limiter.is_blocked("5.6.7.8") is False

    def test_window_slides(self):
        clock = FakeClock()
        limiter = AttemptLimiter(limit=2, window_seconds=60, clock=clock)
        limiter.hit("x")
        clock.advance(30)
        limiter.hit("x")
        assert limiter.is_blocked("x") is True

        clock.advance(30)
        assert limiter.is_blocked("x") is False

    def test_reset(self):
        limiter = AttemptLimiter(limit=1, window_seconds=60, clock=FakeClock())
        limiter.hit("x")
        limiter.reset("x")
        assert limiter.is_blocked("x") is False

    def test_lookups_do_not_track_keys(self):
        limiter = AttemptLimiter(limit=5, window_seconds=60, clock=FakeClock())
        for n in range(10_000):
            assert limiter.is_blocked(f"10.0.{n // 256}.{n % 256}") is False
        assert len(limiter) == 0

    def test_aged_out_keys_are_dropped(self):
        clock = FakeClock()
        limiter = AttemptLimiter(limit=5, window_seconds=60, clock=clock)
        limiter.hit("x")
        assert len(limiter) == 1

        clock.advance(60)
        assert limiter.is_blocked("x") is False
        assert len(limiter) == 0

    def test_tracked_keys_are_capped(self):
        limiter = AttemptLimiter(limit=1, window_seconds=60, max_keys=3, clock=FakeClock())
        for key in ["a", "b", "c", "d"]:
            limiter.hit(key)

        assert len(limiter) == 3
        assert limiter.is_blocked("a") is False
        assert limiter.is_blocked("d") is True
