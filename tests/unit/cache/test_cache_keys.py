"""Tests for cache key generation."""

from beacon.cache.keys import CacheKeys, generate_cache_key


class TestGenerateCacheKey:
    """Test deterministic query keys."""

    def test_parameter_order_does_not_matter(self) -> None:
        """The same parameters in any order give the same key."""
        first = generate_cache_key("events:channel", {"page": 1, "channelId": "ch_1"})
        second = generate_cache_key("events:channel", {"channelId": "ch_1", "page": 1})
        assert first == second
        assert first == "events:channel:channelId:ch_1:page:1"

    def test_values_are_rendered(self) -> None:
        """None renders empty and booleans render lowercase."""
        key = generate_cache_key("p", {"a": None, "b": True, "c": False})
        assert key == "p:a::b:true:c:false"

    def test_empty_params_is_prefix(self) -> None:
        """No parameters yields the bare prefix."""
        assert generate_cache_key("events:stats", {}) == "events:stats"

    def test_distinct_values_distinct_keys(self) -> None:
        """Different parameter values never collide."""
        assert generate_cache_key("p", {"page": 1}) != generate_cache_key("p", {"page": 2})


class TestCacheKeys:
    """Test invalidation and auxiliary keys."""

    def test_channel_views(self) -> None:
        """A channel's list and stats views are enumerated."""
        assert CacheKeys.channel_views("ch_1") == [
            "events:channel:ch_1:list",
            "events:channel:ch_1:stats",
        ]

    def test_organization_views(self) -> None:
        """An organization's list and stats views are enumerated."""
        assert CacheKeys.organization_views("org_1") == [
            "events:org:org_1:list",
            "events:org:org_1:stats",
        ]

    def test_broadcast_channel(self) -> None:
        """Live events are published per channel."""
        assert CacheKeys.broadcast_channel("ch_1") == "events:channel:ch_1"

    def test_idempotency_key(self) -> None:
        """Idempotency records are scoped by organization."""
        assert CacheKeys.idempotency("org_1", "abc") == "idempotency:org_1:abc"

    def test_realtime_bucket_floors_to_window(self) -> None:
        """Timestamps inside one 3s window share a bucket."""
        assert CacheKeys.realtime_bucket(1_700_000_001_234) == 1_700_000_001_000
        assert CacheKeys.realtime_bucket(9_000) == 9_000
        assert CacheKeys.realtime_bucket(11_999) == 9_000
        assert CacheKeys.realtime_bucket(12_000) == 12_000

    def test_realtime_bucket_custom_width(self) -> None:
        """Bucket width follows the configured seconds."""
        assert CacheKeys.realtime_bucket(14_500, bucket_seconds=5) == 10_000
