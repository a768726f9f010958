"""Per-API-key rate limiting.

Redis sorted-set sliding window: each request adds a member scored by its
timestamp, members older than the window are trimmed, and the remaining
count decides. When Redis is unreachable the limiter fails open and
reports the full limit.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ratelimit:apikey:"


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """Outcome of a rate limit check."""

    limit: int
    remaining: int
    reset: int
    allowed: bool = True
    retry_after: int | None = None

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class SlidingWindowRateLimiter:
    """Redis-backed sliding window rate limiter."""

    def __init__(self, redis: Redis, default_limit: int, window_seconds: int):
        self.redis = redis
        self.default_limit = default_limit
        self.window_seconds = window_seconds

    async def check(self, key: str, limit: int | None = None) -> RateLimitInfo:
        """Count this request against ``key``."""
        limit = limit or self.default_limit
        now = time.time()
        reset_at = int(now) + self.window_seconds
        redis_key = f"{RATE_LIMIT_PREFIX}{key}"

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {f"{now:.6f}:{uuid4().hex[:8]}": now})
            pipe.expire(redis_key, self.window_seconds + 1)
            results = await pipe.execute()
        except Exception as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return RateLimitInfo(limit=limit, remaining=limit, reset=reset_at)

        current = int(results[1])
        allowed = current < limit
        return RateLimitInfo(
            limit=limit,
            remaining=max(0, limit - current - 1),
            reset=reset_at,
            allowed=allowed,
            retry_after=None if allowed else self.window_seconds,
        )
