"""Cache key schema for Beacon.

Query cache keys: {prefix}:{name}:{value}:{name}:{value}...

Where:
- prefix: query class, e.g. "events:channel", "events:realtime"
- name/value pairs: query parameters sorted by name, so equivalent
  parameter sets always map to the same key

Invalidation keys: {scope}:{id}:{view}, e.g. "events:channel:ch_1:list".
The backing store is not scanned, so every view that must be dropped on
write is enumerated here.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def generate_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """Build a deterministic key from a prefix and a flat parameter map.

    Parameters are sorted by name and rendered as ``name:value``; the order
    in which they were supplied never changes the key.
    """
    parts = [f"{name}:{_render(params[name])}" for name in sorted(params)]
    return ":".join([prefix, *parts]) if parts else prefix


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class CacheKeys:
    """Cache key generator following consistent naming convention."""

    CHANNEL_LIST = "events:channel"
    ORG_LIST = "events:org"
    REALTIME = "events:realtime"
    STATS = "events:stats"

    IDEMPOTENCY_PREFIX = "idempotency"

    @classmethod
    def channel_list_view(cls, channel_id: str) -> str:
        """Index of cached list pages of a channel."""
        return f"events:channel:{channel_id}:list"

    @classmethod
    def channel_stats_view(cls, channel_id: str) -> str:
        """Index of cached stats of a channel."""
        return f"events:channel:{channel_id}:stats"

    @classmethod
    def organization_list_view(cls, organization_id: str) -> str:
        """Index of cached list pages of an organization."""
        return f"events:org:{organization_id}:list"

    @classmethod
    def organization_stats_view(cls, organization_id: str) -> str:
        """Index of cached stats of an organization."""
        return f"events:org:{organization_id}:stats"

    @classmethod
    def channel_views(cls, channel_id: str) -> list[str]:
        """Keys dropped when an event is written to or deleted from a channel.

        The realtime view is left alone: its TTL is short enough to self-heal.
        """
        return [cls.channel_list_view(channel_id), cls.channel_stats_view(channel_id)]

    @classmethod
    def organization_views(cls, organization_id: str) -> list[str]:
        """Keys dropped when any event of the organization changes."""
        return [
            cls.organization_list_view(organization_id),
            cls.organization_stats_view(organization_id),
        ]

    @classmethod
    def broadcast_channel(cls, channel_id: str) -> str:
        """Pub/sub channel carrying newly created events of a channel."""
        return f"events:channel:{channel_id}"

    @classmethod
    def idempotency(cls, organization_id: str, key: str) -> str:
        """Key for a stored idempotent response."""
        return f"{cls.IDEMPOTENCY_PREFIX}:{organization_id}:{key}"

    @classmethod
    def realtime_bucket(cls, timestamp_ms: int, bucket_seconds: int = 3) -> int:
        """Round a millisecond timestamp down to its polling bucket.

        Concurrent pollers whose cursors fall into the same bucket share one
        cache entry and therefore one query against the event store.
        """
        width = bucket_seconds * 1000
        return (timestamp_ms // width) * width
