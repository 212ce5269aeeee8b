"""
Sliding-window rate limiting for the tracking endpoint.

Keys are derived from the salted IP hash, never the plaintext address.
"""

import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from math import ceil
from typing import Deque, Dict, Optional

import redis

from .clock import Clock

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "analytics_rate_limit:"
EPOCH = datetime(1970, 1, 1)


def rate_limit_key(ip_hash: str) -> str:
    return f"{RATE_LIMIT_KEY_PREFIX}{ip_hash[:16]}"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class InMemoryRateLimiter:
    """Per-process limiter keeping a deque of hit times per key."""

    def __init__(self, limit: int, window_seconds: int, clock: Optional[Clock] = None):
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock or Clock()
        self._hits: Dict[str, Deque[datetime]] = defaultdict(deque)
        self._last_sweep = self.clock.now()

    def hit(self, key: str) -> RateLimitDecision:
        now = self.clock.now()
        window_start = now - self.window
        if now - self._last_sweep >= self.window:
            self._sweep(window_start)
            self._last_sweep = now

        hits = self._hits[key]

        # Drop hits that slid out of the window
        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= self.limit:
            retry_after = max(1, ceil((hits[0] + self.window - now).total_seconds()))
            return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

        hits.append(now)
        return RateLimitDecision(allowed=True, remaining=self.limit - len(hits))

    def _sweep(self, window_start: datetime) -> None:
        """Forget keys whose newest hit has left the window."""
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in idle:
            del self._hits[key]
        if idle:
            logger.debug(f"Rate limiter dropped {len(idle)} idle keys")


class RedisRateLimiter:
    """Limiter shared across workers, backed by one sorted set per key."""

    def __init__(self, client: redis.Redis, limit: int, window_seconds: int, clock: Optional[Clock] = None):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock or Clock()

    def hit(self, key: str) -> RateLimitDecision:
        now = (self.clock.now() - EPOCH).total_seconds()
        window_start = now - self.window_seconds

        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, count, oldest = pipe.execute()

            if count >= self.limit:
                oldest_score = oldest[0][1] if oldest else now
                retry_after = max(1, ceil(oldest_score + self.window_seconds - now))
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

            pipe = self.client.pipeline()
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
            pipe.expire(key, self.window_seconds)
            pipe.execute()
        except redis.RedisError as e:
            # Tracking must keep working when Redis is unreachable
            logger.warning(f"Rate limiter unavailable, admitting request: {e}")
            return RateLimitDecision(allowed=True, remaining=self.limit)

        return RateLimitDecision(allowed=True, remaining=self.limit - count - 1)


def create_rate_limiter(settings, clock: Optional[Clock] = None):
    """Build the limiter selected by ``RATE_LIMIT_BACKEND``."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
            decode_responses=True
        )
        logger.info(f"Using Redis rate limiter at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return RedisRateLimiter(client, settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS, clock)

    return InMemoryRateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS, clock)
