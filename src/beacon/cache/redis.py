"""Redis-backed query cache for Beacon.

Memoizes read queries against the event store with per-query-class TTLs.
The cache never fails a read: malformed entries and Redis errors are
logged and treated as misses, and writes happen in the background.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

import orjson
import redis.asyncio as redis

from beacon.config import settings
from beacon.core.tasks import TaskSet

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Module-level connection pool
_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get or create the Redis client.

    Uses connection pooling for efficient connection management.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(  # type: ignore[no-untyped-call]
            settings.redis_url,
            encoding="utf-8",
            decode_responses=False,  # We're storing bytes
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class QueryCache:
    """Read-through cache for event store queries.

    Entries are orjson documents stored with ``SETEX``. An entry may be
    registered under one or more index sets (``index_keys``); deleting an
    index set through ``invalidate_indexes`` drops every entry registered
    in it without scanning the keyspace.
    """

    def __init__(self, client: Redis, tasks: TaskSet | None = None):
        self.client = client
        self.tasks = tasks or TaskSet("query-cache")

    async def with_cache(
        self,
        key: str,
        ttl: int,
        fetcher: Callable[[], Awaitable[T]],
        index_keys: Sequence[str] = (),
    ) -> T:
        """Return the cached value for ``key`` or compute it with ``fetcher``.

        On a hit the fetcher is not called. On a miss, a malformed entry or
        a Redis read error the fetcher's result is returned and stored in
        the background.
        """
        try:
            raw = await self.client.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            raw = None

        if raw is not None:
            try:
                return orjson.loads(raw)  # type: ignore[no-any-return]
            except orjson.JSONDecodeError:
                logger.warning(f"Malformed cache entry purged: {key}")
                self.tasks.spawn(self._delete_quietly(key), name=f"cache-purge:{key}")

        value = await fetcher()
        self.tasks.spawn(self._store(key, ttl, value, index_keys), name=f"cache-set:{key}")
        return value

    async def _store(self, key: str, ttl: int, value: Any, index_keys: Sequence[str]) -> None:
        try:
            payload = orjson.dumps(value)
            async with self.client.pipeline() as pipe:
                pipe.setex(key, ttl, payload)
                for index_key in index_keys:
                    pipe.sadd(index_key, key)
                    pipe.expire(index_key, ttl)
                await pipe.execute()
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def _delete_quietly(self, *keys: str) -> None:
        try:
            await self.client.delete(*keys)
        except Exception as e:
            logger.warning(f"Cache delete failed for {keys}: {e}")

    async def invalidate(self, *keys: str) -> None:
        """Delete the given keys. Failures are logged, not raised."""
        if keys:
            await self._delete_quietly(*keys)

    async def invalidate_indexes(self, *index_keys: str) -> int:
        """Delete every entry registered under the index sets, and the sets.

        Returns:
            Number of cached entries dropped
        """
        members: set[str] = set()
        try:
            for index_key in index_keys:
                for member in await self.client.smembers(index_key):
                    members.add(member.decode() if isinstance(member, bytes) else member)
        except Exception as e:
            logger.warning(f"Cache index read failed for {index_keys}: {e}")
        await self._delete_quietly(*members, *index_keys)
        return len(members)

    async def invalidate_pattern(self, pattern: str) -> None:
        """Pattern invalidation is not supported; keys are never scanned."""
        logger.warning(f"Pattern invalidation is not supported, ignoring: {pattern}")

    async def drain(self) -> None:
        """Wait for pending background writes and purges."""
        await self.tasks.drain()
