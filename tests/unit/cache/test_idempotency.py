"""Tests for idempotency records."""

import orjson
import pytest

from beacon.cache.idempotency import IdempotencyStore, normalize_key


class TestNormalizeKey:
    """Test Idempotency-Key header normalization."""

    def test_missing_and_blank_mean_no_key(self) -> None:
        """None and whitespace-only keys are ignored."""
        assert normalize_key(None) is None
        assert normalize_key("   ") is None

    def test_key_is_stripped(self) -> None:
        """Surrounding whitespace is removed."""
        assert normalize_key("  abc-123 ") == "abc-123"

    def test_overlong_key_rejected(self) -> None:
        """Keys over 255 characters are invalid."""
        with pytest.raises(ValueError):
            normalize_key("k" * 256)


class TestIdempotencyStore:
    """Test storing and replaying responses."""

    @pytest.mark.asyncio
    async def test_store_then_get(self, fake_redis) -> None:
        """A stored response is returned for the same organization and key."""
        store = IdempotencyStore(fake_redis)
        body = {"success": True, "data": {"id": "evt_1"}}

        await store.store("org_1", "abc", 201, body)
        stored = await store.get("org_1", "abc")

        assert stored is not None
        assert stored.status == 201
        assert stored.body == body
        assert fake_redis.ttls["idempotency:org_1:abc"] == 86400

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_organization(self, fake_redis) -> None:
        """The same key in another organization is a miss."""
        store = IdempotencyStore(fake_redis)
        await store.store("org_1", "abc", 201, {})

        assert await store.get("org_2", "abc") is None

    @pytest.mark.asyncio
    async def test_malformed_record_is_a_miss(self, fake_redis) -> None:
        """Records missing fields are ignored."""
        fake_redis.values["idempotency:org_1:abc"] = orjson.dumps({"body": {}})

        assert await IdempotencyStore(fake_redis).get("org_1", "abc") is None

    @pytest.mark.asyncio
    async def test_lookup_failure_is_a_miss(self, fake_redis) -> None:
        """An unreachable Redis degrades to not-yet-processed."""
        fake_redis.fail = True

        assert await IdempotencyStore(fake_redis).get("org_1", "abc") is None

    @pytest.mark.asyncio
    async def test_store_failure_raises(self, fake_redis) -> None:
        """Store failures are reported to the caller."""
        fake_redis.fail = True

        with pytest.raises(ConnectionError):
            await IdempotencyStore(fake_redis).store("org_1", "abc", 201, {})
