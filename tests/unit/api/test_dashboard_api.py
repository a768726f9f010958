"""Tests for the session authenticated dashboard endpoints."""

import httpx
import pytest
import pytest_asyncio

from beacon.api.routers import health
from beacon.channels.directory import ChannelDirectory
from beacon.config import settings
from beacon.events.models import Event
from beacon.persistence.tables import WebhookTable
from beacon.security import encryption

MASTER_KEY = "k9Vq2mX7pL4rT8wZ1nB6cF3hJ5dG0sYa"


@pytest_asyncio.fixture
async def channel_id(session_factory, tenant) -> str:
    channel = await ChannelDirectory(session_factory).get_or_create("proj_1", "org_1", "deploys")
    return channel.id


async def store_event(services, channel_id: str, title: str = "Deploy finished") -> Event:
    event = Event(
        channel_id=channel_id,
        project_id="proj_1",
        organization_id="org_1",
        title=title,
        user_id="user_9",
    )
    await services.events.create_event(event)
    return event


class TestSessionAuth:
    """Test cookie session checks."""

    @pytest.mark.asyncio
    async def test_no_cookie(self, client: httpx.AsyncClient, channel_id: str) -> None:
        """Dashboard reads need a session."""
        response = await client.get(f"/api/channels/{channel_id}/events")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: httpx.AsyncClient, channel_id: str) -> None:
        """Unknown session tokens are a 401."""
        client.cookies.set(settings.session_cookie_name, "stale")

        response = await client.get(f"/api/channels/{channel_id}/events")

        assert response.status_code == 401


class TestEventReads:
    """Test listing and stats."""

    @pytest.mark.asyncio
    async def test_list_events(self, member_client, services, channel_id: str) -> None:
        """Members page through a channel's events."""
        event = await store_event(services, channel_id)

        response = await member_client.get(
            f"/api/channels/{channel_id}/events", params={"limit": 10}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["id"] for item in data["items"]] == [event.id]
        assert data["metadata"]["total"] == 1

    @pytest.mark.asyncio
    async def test_list_unknown_channel(self, member_client) -> None:
        """Channels of other organizations are not found."""
        response = await member_client.get("/api/channels/ch_missing/events")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, member_client, channel_id: str) -> None:
        """Pages larger than 100 are rejected."""
        response = await member_client.get(
            f"/api/channels/{channel_id}/events", params={"limit": 500}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_stats(self, member_client, services, channel_id: str) -> None:
        """Stats report totals for the organization."""
        await store_event(services, channel_id)

        response = await member_client.get("/api/events/stats", params={"channelId": channel_id})

        assert response.status_code == 200
        assert response.json()["data"]["total_events"] == 1


class TestDeleteEvent:
    """Test permanent deletes."""

    @pytest.mark.asyncio
    async def test_admin_deletes(self, admin_client, services, channel_id, event_store) -> None:
        """Admins delete events of their channels."""
        event = await store_event(services, channel_id)

        response = await admin_client.delete(f"/api/channels/{channel_id}/events/{event.id}")

        assert response.status_code == 200
        assert response.json()["data"] == {"id": event.id}
        assert event_store.requests[-1].url.path == "/v0/datasources/events/delete"

    @pytest.mark.asyncio
    async def test_member_forbidden(self, member_client, services, channel_id) -> None:
        """Members may not delete."""
        event = await store_event(services, channel_id)

        response = await member_client.delete(f"/api/channels/{channel_id}/events/{event.id}")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_channel(self, admin_client, services, channel_id) -> None:
        """An event addressed through another channel is not found."""
        event = await store_event(services, channel_id)

        response = await admin_client.delete(f"/api/channels/ch_other/events/{event.id}")

        assert response.status_code == 404


class TestWebhooks:
    """Test webhook registration."""

    @pytest.mark.asyncio
    async def test_create_with_secret(
        self, admin_client, session_factory, channel_id, monkeypatch
    ) -> None:
        """Secrets are stored encrypted."""
        monkeypatch.setattr(settings, "encryption_key", MASTER_KEY)
        monkeypatch.setattr(encryption, "_cipher", None)

        response = await admin_client.post(
            f"/api/channels/{channel_id}/webhooks",
            json={"url": "https://hooks.example.com/beacon", "secret": "whsec_1"},
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["hasSecret"] is True
        assert data["events"] == ["all"]

        async with session_factory() as session:
            row = await session.get(WebhookTable, data["id"])
        assert row is not None
        assert row.secret != "whsec_1"
        assert encryption.SecretCipher(MASTER_KEY).decrypt(row.secret) == "whsec_1"

    @pytest.mark.asyncio
    async def test_secret_without_key(self, admin_client, channel_id, monkeypatch) -> None:
        """A secret cannot be stored when encryption is not configured."""
        monkeypatch.setattr(settings, "encryption_key", None)

        response = await admin_client.post(
            f"/api/channels/{channel_id}/webhooks",
            json={"url": "https://hooks.example.com/beacon", "secret": "whsec_1"},
        )

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_private_url_rejected(self, admin_client, channel_id) -> None:
        """Webhooks may not target private addresses."""
        response = await admin_client.post(
            f"/api/channels/{channel_id}/webhooks",
            json={"url": "http://169.254.169.254/latest/meta-data/"},
        )

        assert response.status_code == 400
        assert response.json()["details"][0]["path"] == "url"

    @pytest.mark.asyncio
    async def test_member_forbidden(self, member_client, channel_id) -> None:
        """Members may not manage webhooks."""
        response = await member_client.post(
            f"/api/channels/{channel_id}/webhooks", json={"url": "https://hooks.example.com/"}
        )

        assert response.status_code == 403


class TestPushSubscriptions:
    """Test browser push subscription management."""

    SUBSCRIPTION = {
        "subscription": {
            "endpoint": "https://push.example.com/send/abc",
            "keys": {"p256dh": "BNc...", "auth": "tBH..."},
        },
        "channelIds": ["ch_1"],
    }

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, member_client) -> None:
        """A browser can register and then remove itself."""
        created = await member_client.post("/api/push/subscriptions", json=self.SUBSCRIPTION)
        again = await member_client.post("/api/push/subscriptions", json=self.SUBSCRIPTION)

        assert created.status_code == 201
        assert again.json()["data"]["id"] == created.json()["data"]["id"]
        assert created.json()["data"]["channelIds"] == ["ch_1"]

        removed = await member_client.request(
            "DELETE",
            "/api/push/subscriptions",
            json={"endpoint": "https://push.example.com/send/abc"},
        )
        missing = await member_client.request(
            "DELETE",
            "/api/push/subscriptions",
            json={"endpoint": "https://push.example.com/send/abc"},
        )

        assert removed.status_code == 200
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_endpoint(self, member_client) -> None:
        """Endpoints must be URLs."""
        body = {"subscription": {"endpoint": "nope", "keys": {"p256dh": "a", "auth": "b"}}}

        response = await member_client.post("/api/push/subscriptions", json=body)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_vapid_public_key(self, member_client) -> None:
        """The public key is served to signed-in users."""
        response = await member_client.get("/api/push/vapid-public-key")

        assert response.status_code == 200
        assert "publicKey" in response.json()["data"]


class TestStreams:
    """Test SSE endpoint guards."""

    @pytest.mark.asyncio
    async def test_unknown_channel(self, member_client) -> None:
        """Streams of unknown channels are a 404 before streaming starts."""
        response = await member_client.get("/api/channels/ch_missing/events/stream")

        assert response.status_code == 404
        assert response.json()["error"] == "Not found"

    @pytest.mark.asyncio
    async def test_requires_session(self, client: httpx.AsyncClient) -> None:
        """The organization stream needs a session."""
        response = await client.get("/api/stream")

        assert response.status_code == 401


class TestHealth:
    """Test health probes."""

    @pytest.mark.asyncio
    async def test_ready_unhealthy(self, client: httpx.AsyncClient, monkeypatch) -> None:
        """A failing component makes readiness answer 503."""

        async def healthy() -> health.ComponentHealth:
            return health.ComponentHealth(
                name="database", status=health.HealthStatus.HEALTHY, latency_ms=0.0
            )

        async def down() -> health.ComponentHealth:
            return await health._check("redis", failing_probe)

        async def failing_probe() -> bool:
            raise ConnectionError("redis down")

        monkeypatch.setattr(health, "_health_cache", None)
        monkeypatch.setattr(health, "check_database", healthy)
        monkeypatch.setattr(health, "check_redis", down)

        response = await client.get("/health/ready")

        assert response.status_code == 503
        components = {c["name"]: c for c in response.json()["components"]}
        assert components["redis"]["status"] == "unhealthy"
        assert components["redis"]["message"] == "redis down"
