"""Tests for outbound webhook delivery."""

import httpx
import orjson
import pytest

from beacon.events.models import Event
from beacon.notifications.webhooks import (
    WebhookTarget,
    build_headers,
    dispatch_webhooks,
    load_targets,
)
from beacon.persistence.tables import WebhookTable
from beacon.security.encryption import SecretCipher
from beacon.security.signing import SIGNATURE_HEADER, verify_signature

MASTER_KEY = "k9Vq2mX7pL4rT8wZ1nB6cF3hJ5dG0sYa"


def make_event() -> Event:
    return Event(
        channel_id="ch_1",
        project_id="proj_1",
        organization_id="org_1",
        title="Deploy finished",
        user_id="user_1",
    )


class Receiver:
    """Records requests and answers per host."""

    def __init__(
        self, statuses: dict[str, int] | None = None, timeout_hosts: frozenset[str] = frozenset()
    ):
        self.statuses = statuses or {}
        self.timeout_hosts = timeout_hosts
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.timeout_hosts:
            raise httpx.ReadTimeout("slow receiver", request=request)
        return httpx.Response(self.statuses.get(request.url.host, 200))


class TestDispatchWebhooks:
    """Test delivery to webhook targets."""

    @pytest.mark.asyncio
    async def test_signed_payload(self) -> None:
        """Targets with a secret get an HMAC of the exact body."""
        receiver = Receiver()
        async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
            summary = await dispatch_webhooks(
                [WebhookTarget(id="wh_1", url="https://hooks.example.com/a", secret="whsec_1")],
                make_event(),
                client=client,
            )

        assert summary == {"total": 1, "succeeded": 1, "failed": 0, "failures": []}
        (request,) = receiver.requests
        assert verify_signature(request.content, "whsec_1", request.headers[SIGNATURE_HEADER])
        body = orjson.loads(request.content)
        assert body["title"] == "Deploy finished"
        assert body["user_id"] == "user_1"

    @pytest.mark.asyncio
    async def test_unsigned_without_secret(self) -> None:
        """Targets without a secret are sent unsigned."""
        receiver = Receiver()
        async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
            await dispatch_webhooks(
                [WebhookTarget(id="wh_1", url="https://hooks.example.com/a")],
                make_event(),
                client=client,
            )

        assert SIGNATURE_HEADER not in receiver.requests[0].headers

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self) -> None:
        """A non-2xx answer and a timeout do not stop the other targets."""
        receiver = Receiver(statuses={"down.example.com": 500}, timeout_hosts={"slow.example.com"})
        targets = [
            WebhookTarget(id="wh_ok", url="https://ok.example.com/"),
            WebhookTarget(id="wh_down", url="https://down.example.com/"),
            WebhookTarget(id="wh_slow", url="https://slow.example.com/"),
        ]
        async with httpx.AsyncClient(transport=httpx.MockTransport(receiver)) as client:
            summary = await dispatch_webhooks(targets, make_event(), client=client)

        assert summary["total"] == 3
        assert summary["succeeded"] == 1
        assert summary["failed"] == 2
        assert {f["webhookId"] for f in summary["failures"]} == {"wh_down", "wh_slow"}
        assert len(receiver.requests) == 3

    @pytest.mark.asyncio
    async def test_no_targets(self) -> None:
        """Nothing to deliver gives an empty summary."""
        summary = await dispatch_webhooks([], make_event())
        assert summary["total"] == 0


class TestWebhookTargets:
    """Test turning stored webhooks into targets."""

    def test_headers(self) -> None:
        """JSON content type is always set."""
        headers = build_headers(b"{}", None)
        assert headers["Content-Type"] == "application/json"
        assert "User-Agent" in headers

    def test_secret_is_decrypted(self) -> None:
        """Encrypted secrets are decrypted for signing."""
        cipher = SecretCipher(MASTER_KEY)
        row = WebhookTable(id="wh_1", url="https://a.example.com", secret=cipher.encrypt("whsec_1"))

        targets, skipped = load_targets([row], cipher)

        assert targets == [WebhookTarget(id="wh_1", url="https://a.example.com", secret="whsec_1")]
        assert skipped == []

    def test_undecryptable_secret_is_reported(self) -> None:
        """A secret encrypted under another key is skipped and reported."""
        other = SecretCipher("Zr8Lq1Wm4Xv7Tn2Pb5Kc9Hd3Jf6Gs0Ya")
        row = WebhookTable(id="wh_1", url="https://a.example.com", secret=other.encrypt("whsec_1"))

        targets, skipped = load_targets([row], SecretCipher(MASTER_KEY))

        assert targets == []
        assert skipped[0]["webhookId"] == "wh_1"

    def test_plaintext_secret_passes_through(self) -> None:
        """Values that are not ciphertext are used as-is."""
        row = WebhookTable(id="wh_1", url="https://a.example.com", secret="legacy")

        target = WebhookTarget.from_row(row, SecretCipher(MASTER_KEY))

        assert target.secret == "legacy"
