"""Idempotency records for retried write requests.

A record maps ``(organization, Idempotency-Key)`` to the status and body of
the first successful response, kept for 24 hours. Lookups degrade to
"not yet processed" when Redis is unavailable; storing the record is
awaited by the caller and its failure is reported to the caller.

The check and the store are two separate operations. Two first-time
requests racing with the same key can both miss the check and both write;
the window is the duration of one ingestion call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import orjson

from beacon.cache.keys import CacheKeys
from beacon.config import settings

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "X-Idempotent-Replay"
MAX_KEY_LENGTH = 255


@dataclass(frozen=True)
class StoredResponse:
    """Previously computed response for an idempotency key."""

    status: int
    body: Any


def normalize_key(value: str | None) -> str | None:
    """Strip a supplied key; empty values mean no key."""
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if len(cleaned) > MAX_KEY_LENGTH:
        raise ValueError(f"Idempotency-Key exceeds {MAX_KEY_LENGTH} characters")
    return cleaned


class IdempotencyStore:
    """Redis-backed idempotency record store."""

    def __init__(self, client: Redis, ttl: int | None = None):
        self.client = client
        self.ttl = ttl if ttl is not None else settings.idempotency_ttl

    async def get(self, organization_id: str, key: str) -> StoredResponse | None:
        """Return the stored response, or None when absent or unreadable."""
        redis_key = CacheKeys.idempotency(organization_id, key)
        try:
            raw = await self.client.get(redis_key)
        except Exception as e:
            logger.warning(
                f"Idempotency lookup failed, treating as new request: {e}",
                extra={"organization_id": organization_id},
            )
            return None

        if raw is None:
            return None

        try:
            data = orjson.loads(raw)
            return StoredResponse(status=int(data["status"]), body=data["body"])
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning(
                f"Malformed idempotency record ignored: {redis_key}",
                extra={"organization_id": organization_id},
            )
            return None

    async def store(self, organization_id: str, key: str, status: int, body: Any) -> None:
        """Persist the response under the key with the configured TTL."""
        redis_key = CacheKeys.idempotency(organization_id, key)
        await self.client.set(
            redis_key,
            orjson.dumps({"body": body, "status": status}),
            ex=self.ttl,
        )
