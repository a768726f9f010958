"""Outbound webhook delivery.

Each enabled webhook of a channel receives a JSON POST describing the new
event. When the webhook has a secret, the exact body bytes are signed with
HMAC-SHA256 and the hex digest is sent as ``X-Webhook-Signature``.

Targets are delivered concurrently and independently: one timeout or
non-2xx answer never prevents delivery to the others, and
``dispatch_webhooks`` always returns a summary instead of raising.

Example:
    targets = [WebhookTarget.from_row(row, get_cipher()) for row in rows]
    summary = await dispatch_webhooks(targets, event, client=http)
    # {"total": 3, "succeeded": 2, "failed": 1, "failures": [...]}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import orjson

from beacon.config import settings
from beacon.events.models import Event
from beacon.security.encryption import DecryptionError, SecretCipher, is_encrypted
from beacon.security.signing import SIGNATURE_HEADER, sign_payload
from beacon.security.urls import validate_outbound_url

if TYPE_CHECKING:
    from beacon.persistence.tables import WebhookTable

logger = logging.getLogger(__name__)


class WebhookDeliveryError(Exception):
    """A single webhook target could not be delivered to."""

    def __init__(self, message: str, webhook_id: str, status_code: int | None = None):
        super().__init__(message)
        self.webhook_id = webhook_id
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class WebhookTarget:
    """A webhook ready for delivery, with its secret in plaintext."""

    id: str
    url: str
    secret: str | None = None

    @classmethod
    def from_row(cls, row: WebhookTable, cipher: SecretCipher | None = None) -> WebhookTarget:
        """Build a target, decrypting the stored secret.

        Raises:
            DecryptionError: The stored secret cannot be decrypted
        """
        secret = row.secret
        if secret and cipher is not None and is_encrypted(secret):
            secret = cipher.decrypt(secret)
        return cls(id=row.id, url=row.url, secret=secret or None)


def validate_webhook_url(url: str) -> str:
    """Reject webhook URLs that point at local or private addresses."""
    return validate_outbound_url(url)


def build_payload(event: Event) -> bytes:
    return orjson.dumps(event.to_webhook_payload())


def build_headers(body: bytes, secret: str | None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": settings.webhook_user_agent,
    }
    if secret:
        headers[SIGNATURE_HEADER] = sign_payload(body, secret)
    return headers


async def send_webhook(client: httpx.AsyncClient, target: WebhookTarget, body: bytes) -> int:
    """POST one payload.

    Returns:
        The response status code

    Raises:
        WebhookDeliveryError: Transport failure, timeout or non-2xx answer
    """
    try:
        response = await client.post(
            target.url,
            content=body,
            headers=build_headers(body, target.secret),
            timeout=settings.webhook_timeout,
        )
    except httpx.TimeoutException as e:
        raise WebhookDeliveryError(f"Webhook timed out: {e}", target.id) from e
    except httpx.HTTPError as e:
        raise WebhookDeliveryError(f"Webhook request failed: {e}", target.id) from e

    if not response.is_success:
        raise WebhookDeliveryError(
            f"Webhook failed: {response.status_code} {response.reason_phrase}",
            target.id,
            status_code=response.status_code,
        )
    return response.status_code


async def dispatch_webhooks(
    targets: Sequence[WebhookTarget],
    event: Event,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Deliver ``event`` to every target and summarise the outcome."""
    summary: dict[str, Any] = {
        "total": len(targets),
        "succeeded": 0,
        "failed": 0,
        "failures": [],
    }
    if not targets:
        return summary

    body = build_payload(event)
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=settings.webhook_timeout)
    try:
        results = await asyncio.gather(
            *(send_webhook(http, target, body) for target in targets),
            return_exceptions=True,
        )
    finally:
        if owns_client:
            await http.aclose()

    for target, result in zip(targets, results, strict=True):
        if not isinstance(result, BaseException):
            summary["succeeded"] += 1
            continue
        summary["failed"] += 1
        summary["failures"].append(
            {"webhookId": target.id, "url": target.url, "error": str(result)}
        )
        logger.error(
            f"Webhook dispatch failed: {result}",
            extra={
                "webhook_id": target.id,
                "url": target.url,
                "event_id": event.id,
                "channel_id": event.channel_id,
            },
        )

    logger.info(
        "Webhooks dispatched",
        extra={
            "event_id": event.id,
            "total": summary["total"],
            "succeeded": summary["succeeded"],
            "failed": summary["failed"],
        },
    )
    return summary


def load_targets(
    rows: Sequence[WebhookTable], cipher: SecretCipher | None
) -> tuple[list[WebhookTarget], list[dict[str, Any]]]:
    """Turn rows into targets; rows whose secret fails to decrypt are reported, not sent."""
    targets: list[WebhookTarget] = []
    skipped: list[dict[str, Any]] = []
    for row in rows:
        try:
            targets.append(WebhookTarget.from_row(row, cipher))
        except DecryptionError as e:
            logger.error(
                f"Webhook secret could not be decrypted: {e}",
                extra={"webhook_id": row.id, "code": e.code},
            )
            skipped.append({"webhookId": row.id, "url": row.url, "error": str(e)})
    return targets, skipped
