"""Event view invalidation and live broadcast over Redis.

Writes to the event store drop the cached list and stats views of the
affected channel and organization, and publish the new event on the
channel's Pub/Sub topic for subscribers that listen instead of polling.

Example:
    invalidator = CacheInvalidator(query_cache)
    await invalidator.invalidate_channel("ch_123")

    publisher = EventBroadcaster(redis)
    await publisher.publish(CacheKeys.broadcast_channel("ch_123"),
                            BroadcastMessage(type="event", data={...}))
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import orjson

from beacon.cache.keys import CacheKeys

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from beacon.cache.redis import QueryCache

logger = logging.getLogger(__name__)


@dataclass
class BroadcastMessage:
    """Message published to live subscribers."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        """Serialize to JSON bytes."""
        return orjson.dumps({"type": self.type, "data": self.data})

    @classmethod
    def from_bytes(cls, data: bytes) -> BroadcastMessage:
        """Deserialize from JSON bytes."""
        parsed = orjson.loads(data)
        return cls(type=parsed["type"], data=parsed.get("data") or {})


class CacheInvalidator:
    """Drops the enumerated cached views of a channel or organization."""

    def __init__(self, cache: QueryCache):
        self.cache = cache

    async def invalidate_channel(self, channel_id: str) -> int:
        """Invalidate the list and stats views of a channel."""
        dropped = await self.cache.invalidate_indexes(*CacheKeys.channel_views(channel_id))
        logger.debug(f"Invalidated {dropped} cached views for channel {channel_id}")
        return dropped

    async def invalidate_organization(self, organization_id: str) -> int:
        """Invalidate the list and stats views of an organization."""
        dropped = await self.cache.invalidate_indexes(
            *CacheKeys.organization_views(organization_id)
        )
        logger.debug(f"Invalidated {dropped} cached views for organization {organization_id}")
        return dropped


class EventBroadcaster:
    """Publishes and receives live event messages via Redis Pub/Sub."""

    def __init__(self, client: Redis):
        self.client = client

    async def publish(self, channel: str, message: BroadcastMessage) -> int:
        """Publish a message.

        Returns:
            Number of subscribers that received it
        """
        receivers = await self.client.publish(channel, message.to_bytes())
        logger.debug(f"Published {message.type} to {channel} ({receivers} receivers)")
        return int(receivers)

    async def subscribe(self, channel: str) -> AsyncIterator[BroadcastMessage]:
        """Yield messages published to ``channel`` until the caller stops."""
        pubsub = self.client.pubsub()
        await pubsub.subscribe(channel)
        try:
            async for raw in pubsub.listen():
                if raw.get("type") != "message":
                    continue
                try:
                    yield BroadcastMessage.from_bytes(raw["data"])
                except (orjson.JSONDecodeError, KeyError) as e:
                    logger.warning(f"Dropping malformed broadcast on {channel}: {e}")
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
