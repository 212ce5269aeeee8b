"""Tests for the sliding-window rate limiters."""

import redis

from analytics_engine.core.clock import FrozenClock
from analytics_engine.core.rate_limiter import (
    InMemoryRateLimiter, RedisRateLimiter, create_rate_limiter, rate_limit_key
)

from conftest import NOW, make_settings


class FakePipeline:
    """Just enough of a redis pipeline for the sorted-set commands the limiter uses."""

    def __init__(self, store):
        self.store = store
        self.commands = []

    def zremrangebyscore(self, key, low, high):
        self.commands.append(("zremrangebyscore", key, low, high))

    def zcard(self, key):
        self.commands.append(("zcard", key))

    def zrange(self, key, start, end, withscores=False):
        self.commands.append(("zrange", key, start, end))

    def zadd(self, key, mapping):
        self.commands.append(("zadd", key, mapping))

    def expire(self, key, seconds):
        self.commands.append(("expire", key, seconds))

    def execute(self):
        results = []
        for command, key, *args in self.commands:
            members = self.store.setdefault(key, {})
            if command == "zremrangebyscore":
                low, high = args
                doomed = [m for m, score in members.items() if low <= score <= high]
                for member in doomed:
                    del members[member]
                results.append(len(doomed))
            elif command == "zcard":
                results.append(len(members))
            elif command == "zrange":
                ordered = sorted(members.items(), key=lambda item: item[1])
                results.append(ordered[:1])
            elif command == "zadd":
                members.update(args[0])
                results.append(len(args[0]))
            else:
                results.append(True)
        self.commands = []
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self):
        return FakePipeline(self.store)


class BrokenRedis:
    def pipeline(self):
        raise redis.ConnectionError("connection refused")


class TestInMemoryRateLimiter:
    def test_allows_up_to_the_limit_then_rejects(self):
        limiter = InMemoryRateLimiter(limit=3, window_seconds=3600, clock=FrozenClock(NOW))

        decisions = [limiter.hit("visitor") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions[:3]] == [2, 1, 0]
        assert decisions[3].retry_after == 3600

    def test_rejected_hits_are_not_recorded(self):
        clock = FrozenClock(NOW)
        limiter = InMemoryRateLimiter(limit=1, window_seconds=60, clock=clock)
        limiter.hit("visitor")
        for _ in range(5):
            assert not limiter.hit("visitor").allowed

        clock.advance(seconds=61)
        assert limiter.hit("visitor").allowed

    def test_window_slides(self):
        clock = FrozenClock(NOW)
        limiter = InMemoryRateLimiter(limit=2, window_seconds=3600, clock=clock)
        limiter.hit("visitor")
        clock.advance(minutes=30)
        limiter.hit("visitor")
        assert not limiter.hit("visitor").allowed

        # The first hit leaves the window, the second is still inside it
        clock.advance(minutes=31)
        assert limiter.hit("visitor").allowed
        assert not limiter.hit("visitor").allowed

    def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter(limit=1, window_seconds=3600, clock=FrozenClock(NOW))
        assert limiter.hit("a").allowed
        assert limiter.hit("b").allowed
        assert not limiter.hit("a").allowed

    def test_idle_keys_are_forgotten(self):
        clock = FrozenClock(NOW)
        limiter = InMemoryRateLimiter(limit=5, window_seconds=3600, clock=clock)
        for index in range(10000):
            limiter.hit(f"visitor-{index}")
        assert len(limiter._hits) == 10000

        clock.advance(hours=2)
        assert limiter.hit("returning").allowed

        assert list(limiter._hits) == ["returning"]

    def test_sweep_keeps_keys_still_in_the_window(self):
        clock = FrozenClock(NOW)
        limiter = InMemoryRateLimiter(limit=1, window_seconds=3600, clock=clock)
        limiter.hit("old")
        clock.advance(minutes=50)
        limiter.hit("recent")

        clock.advance(minutes=20)
        limiter.hit("other")

        assert set(limiter._hits) == {"recent", "other"}
        assert not limiter.hit("recent").allowed


class TestRedisRateLimiter:
    def test_allows_up_to_the_limit_then_rejects(self):
        clock = FrozenClock(NOW)
        limiter = RedisRateLimiter(FakeRedis(), limit=2, window_seconds=3600, clock=clock)

        assert limiter.hit("key").allowed
        assert limiter.hit("key").allowed
        rejected = limiter.hit("key")
        assert not rejected.allowed
        assert rejected.retry_after == 3600

        clock.advance(seconds=3601)
        assert limiter.hit("key").allowed

    def test_admits_requests_when_redis_is_down(self):
        limiter = RedisRateLimiter(BrokenRedis(), limit=1, window_seconds=60, clock=FrozenClock(NOW))
        assert limiter.hit("key").allowed
        assert limiter.hit("key").allowed


def test_key_uses_hash_prefix():
    ip_hash = "f" * 64
    assert rate_limit_key(ip_hash) == "analytics_rate_limit:" + "f" * 16


def test_factory_defaults_to_memory_backend():
    limiter = create_rate_limiter(make_settings(RATE_LIMIT_REQUESTS=7))
    assert isinstance(limiter, InMemoryRateLimiter)
    assert limiter.limit == 7
