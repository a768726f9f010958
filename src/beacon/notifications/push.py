"""Web Push delivery to browser subscriptions.

Subscriptions are stored per (user, endpoint) with an optional list of
channel ids; an empty list means "every channel of the organization".
Delivery uses ``pywebpush`` (synchronous, so each send runs in a worker
thread). A push service answering 404 or 410 means the subscription is
gone: it is deleted and not counted as a failure.

Example:
    service = PushNotificationService(session_factory)
    stats = await service.send_to_channels("org_1", ["ch_1"], {"title": "Deploy"})
    # {"total_success": 2, "total_failed": 0, "by_user": {...}}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import orjson
from pywebpush import WebPushException, webpush
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beacon.config import settings
from beacon.events.models import Event
from beacon.persistence.repositories import PushSubscriptionRepository
from beacon.persistence.tables import PushSubscriptionTable

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = frozenset({404, 410})

WebPushSender = Callable[..., Any]


@dataclass(frozen=True)
class VapidConfig:
    public_key: str | None
    private_key: str | None
    subject: str

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.private_key)

    @classmethod
    def from_settings(cls) -> VapidConfig:
        return cls(
            public_key=settings.vapid_public_key,
            private_key=settings.vapid_private_key,
            subject=settings.vapid_subject,
        )


@dataclass
class DeliveryStats:
    success: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "failed": self.failed, "errors": list(self.errors)}


def build_event_payload(event: Event, channel_name: str | None = None) -> dict[str, Any]:
    """Notification shown for a new event."""
    return {
        "title": event.title,
        "body": event.description or (f"New event in #{channel_name}" if channel_name else ""),
        "icon": event.icon,
        "tag": event.id,
        "data": {
            "eventId": event.id,
            "channelId": event.channel_id,
            "url": f"{settings.public_url.rstrip('/')}/channels/{event.channel_id}",
        },
    }


def _status_of(error: WebPushException) -> int | None:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def _matches(subscription: PushSubscriptionTable, channel_ids: set[str]) -> bool:
    if not subscription.channel_ids:
        return True
    return bool(channel_ids.intersection(subscription.channel_ids))


class PushNotificationService:
    """Sends push notifications and prunes gone subscriptions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vapid: VapidConfig | None = None,
        sender: WebPushSender = webpush,
    ):
        self.session_factory = session_factory
        self.vapid = vapid or VapidConfig.from_settings()
        self._sender = sender
        self.timeout = settings.push_timeout
        if not self.vapid.configured:
            logger.warning("VAPID keys not configured, push notifications disabled")

    @property
    def public_key(self) -> str | None:
        return self.vapid.public_key

    def _send_blocking(self, subscription_info: dict[str, Any], data: str) -> None:
        self._sender(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=self.vapid.private_key,
            vapid_claims={"sub": self.vapid.subject},
            timeout=self.timeout,
        )

    async def _deliver(
        self, subscription: PushSubscriptionTable, data: str
    ) -> tuple[str, str | None]:
        """Send to one subscription.

        Returns:
            ("sent", None), ("gone", None) or ("failed", error)
        """
        try:
            await asyncio.to_thread(self._send_blocking, subscription.subscription_info(), data)
        except WebPushException as e:
            if _status_of(e) in GONE_STATUS_CODES:
                return "gone", None
            return "failed", str(e)
        except Exception as e:
            return "failed", str(e) or type(e).__name__
        return "sent", None

    async def _deliver_all(
        self, subscriptions: Sequence[PushSubscriptionTable], payload: dict[str, Any]
    ) -> DeliveryStats:
        stats = DeliveryStats()
        if not subscriptions:
            return stats

        data = orjson.dumps(payload).decode()
        outcomes = await asyncio.gather(*(self._deliver(s, data) for s in subscriptions))

        gone: list[PushSubscriptionTable] = []
        for subscription, (outcome, error) in zip(subscriptions, outcomes, strict=True):
            if outcome == "sent":
                stats.success += 1
            elif outcome == "gone":
                gone.append(subscription)
            else:
                stats.failed += 1
                stats.errors.append({"endpoint": subscription.endpoint, "error": error or ""})
                logger.error(
                    f"Error sending push notification: {error}",
                    extra={"endpoint": subscription.endpoint, "user_id": subscription.user_id},
                )

        if gone:
            await self._prune(gone)
        return stats

    async def _prune(self, subscriptions: Sequence[PushSubscriptionTable]) -> None:
        """Delete gone subscriptions. A failure is logged; the next send retries it."""
        ids = [subscription.id for subscription in subscriptions]
        try:
            async with self.session_factory() as session:
                repo = PushSubscriptionRepository(session)
                for subscription_id in ids:
                    await repo.delete(subscription_id)
                await session.commit()
        except Exception:
            logger.exception("Failed to remove expired push subscriptions", extra={"ids": ids})
            return
        logger.info("Removed expired push subscriptions", extra={"ids": ids})

    async def send_to_user(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Push to every device of a user."""
        if not self.vapid.configured:
            return DeliveryStats().to_dict()

        async with self.session_factory() as session:
            subscriptions = await PushSubscriptionRepository(session).list_for_user(user_id)
        if not subscriptions:
            logger.info("No push subscriptions found for user", extra={"user_id": user_id})
        return (await self._deliver_all(subscriptions, payload)).to_dict()

    async def send_to_users(
        self, user_ids: Iterable[str], payload: dict[str, Any]
    ) -> dict[str, dict[str, int]]:
        unique = list(dict.fromkeys(user_ids))
        results = await asyncio.gather(*(self.send_to_user(uid, payload) for uid in unique))
        return {
            uid: {"success": stats["success"], "failed": stats["failed"]}
            for uid, stats in zip(unique, results, strict=True)
        }

    async def send_to_channels(
        self, organization_id: str, channel_ids: Iterable[str], payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Push to every subscriber of the organization interested in any of the channels."""
        empty: dict[str, Any] = {"total_success": 0, "total_failed": 0, "by_user": {}}
        if not self.vapid.configured:
            return empty

        wanted = set(channel_ids)
        async with self.session_factory() as session:
            subscriptions = await PushSubscriptionRepository(session).list_for_organization(
                organization_id
            )
        matching = [s for s in subscriptions if _matches(s, wanted)]
        if not matching:
            return empty

        by_user_subs: dict[str, list[PushSubscriptionTable]] = {}
        for subscription in matching:
            by_user_subs.setdefault(subscription.user_id, []).append(subscription)

        users = list(by_user_subs)
        results = await asyncio.gather(
            *(self._deliver_all(by_user_subs[uid], payload) for uid in users)
        )
        by_user = {
            uid: {"success": stats.success, "failed": stats.failed}
            for uid, stats in zip(users, results, strict=True)
        }
        summary = {
            "total_success": sum(s.success for s in results),
            "total_failed": sum(s.failed for s in results),
            "by_user": by_user,
        }
        logger.info(
            "Push notification results",
            extra={
                "organization_id": organization_id,
                "channel_ids": sorted(wanted),
                "total_success": summary["total_success"],
                "total_failed": summary["total_failed"],
            },
        )
        return summary
