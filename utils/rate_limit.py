import math
from dataclasses import dataclass
from time import time
from typing import Dict, Optional
from starlette.requests import Request
import logging

import redis

from config.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: float

    def retry_after(self, now: Optional[float] = None) -> int:
        """Whole seconds until the window resets (never negative)."""
        now = time() if now is None else now
        return max(0, math.ceil(self.reset_time - now))

    def headers(self, limit: int) -> Dict[str, str]:
        # Reset is reported as epoch milliseconds
        return {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time * 1000)),
        }


class InMemoryRateLimitStore:
    """
    Process-local fixed-window counters: key -> (count, reset_time).
    Expired entries are swept once the table grows past max_entries.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: Dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def hit(self, key: str, limit: int, window_seconds: float, now: float) -> RateLimitDecision:
        entry = self._entries.get(key)

        if entry is None or now > entry.reset_time:
            entry = RateLimitEntry(count=1, reset_time=now + window_seconds)
            self._entries[key] = entry
            if len(self._entries) > self.max_entries:
                self._sweep(now)
            return RateLimitDecision(True, limit - 1, entry.reset_time)

        if entry.count >= limit:
            return RateLimitDecision(False, 0, entry.reset_time)

        entry.count += 1
        return RateLimitDecision(True, limit - entry.count, entry.reset_time)

    def _sweep(self, now: float) -> None:
        expired = [k for k, v in self._entries.items() if now > v.reset_time]
        for k in expired:
            del self._entries[k]
        logger.info(f"Rate limit table swept: removed {len(expired)} expired entries, {len(self._entries)} remain")


class RedisRateLimitStore:
    """
    Shared fixed-window counters in Redis (INCR + PEXPIRE), so every process
    enforces the same quota.
    """

    def __init__(self, client: "redis.Redis", prefix: str = "rate_limit"):
        self.client = client
        self.prefix = prefix

    def hit(self, key: str, limit: int, window_seconds: float, now: float) -> RateLimitDecision:
        redis_key = f"{self.prefix}:{key}"
        window_ms = int(window_seconds * 1000)

        pipeline = self.client.pipeline()
        pipeline.incr(redis_key)
        pipeline.pttl(redis_key)
        count, ttl_ms = pipeline.execute()
        count = int(count)

        if ttl_ms is None or int(ttl_ms) < 0:
            self.client.pexpire(redis_key, window_ms)
            ttl_ms = window_ms

        reset_time = now + int(ttl_ms) / 1000.0
        if count > limit:
            return RateLimitDecision(False, 0, reset_time)
        return RateLimitDecision(True, limit - count, reset_time)


class FixedWindowRateLimiter:
    """
    Fixed-window rate limiter.
    Default: 5 requests per 60 seconds per key.

    Uses the Redis store when one is supplied and falls back to the
    in-memory store if Redis errors.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        redis_store: Optional[RedisRateLimitStore] = None,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.memory_store = InMemoryRateLimitStore(max_entries=max_entries)
        self.redis_store = redis_store

    def check_rate_limit(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        now = time() if now is None else now

        if self.redis_store is not None:
            try:
                return self.redis_store.hit(key, self.limit, self.window_seconds, now)
            except redis.RedisError as e:
                logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")

        return self.memory_store.hit(key, self.limit, self.window_seconds, now)


def get_client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        # Take first IP in the list
        return xff.split(",")[0].strip()
    client = request.client
    return client.host if client else "unknown"


def build_redis_store(redis_url: Optional[str]) -> Optional[RedisRateLimitStore]:
    if not redis_url:
        logger.info("REDIS_URL not set. Using in-memory rate limiting.")
        return None
    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
        logger.info("Redis connected successfully for rate limiting")
        return RedisRateLimitStore(client)
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Falling back to in-memory rate limiting.")
        return None


def create_email_verify_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        limit=settings.email_verify_rate_limit,
        window_seconds=settings.email_verify_rate_window_seconds,
        redis_store=build_redis_store(settings.redis_url),
    )
