"""Cache layer for Beacon.

Provides Redis-backed query caching and live broadcast:
- Deterministic, order-independent query keys
- Read-through caching with per-query-class TTLs
- Enumerated invalidation of channel and organization views
- Pub/Sub broadcast of newly created events
"""

from beacon.cache.invalidation import BroadcastMessage, CacheInvalidator, EventBroadcaster
from beacon.cache.keys import CacheKeys, generate_cache_key
from beacon.cache.redis import QueryCache, close_redis, get_redis

__all__ = [
    "CacheKeys",
    "generate_cache_key",
    "QueryCache",
    "get_redis",
    "close_redis",
    "CacheInvalidator",
    "EventBroadcaster",
    "BroadcastMessage",
]
