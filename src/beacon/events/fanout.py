"""Post-write fan-out.

Once an event is durably written, three independent side effects follow:

1. drop the cached list and stats views of its channel and organization
2. publish the event on ``events:channel:{channel_id}`` for live listeners
3. queue the ``event_notifications`` job (webhooks and push)

``dispatch`` schedules all of them and returns immediately. Each side
effect logs and swallows its own failure, so one cannot block or break
another; stale reads are bounded by the cache TTLs and the job queue
retries the notification work itself.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any

from beacon.cache.invalidation import BroadcastMessage, CacheInvalidator, EventBroadcaster
from beacon.cache.keys import CacheKeys
from beacon.core.context import RequestContext
from beacon.core.tasks import TaskSet
from beacon.events.models import Event
from beacon.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

EVENT_NOTIFICATIONS_TASK = "event_notifications"


def notification_job_payload(event: Event) -> dict[str, Any]:
    return {
        "eventId": event.id,
        "channelId": event.channel_id,
        "organizationId": event.organization_id,
        "projectId": event.project_id,
        "notify": event.notify,
        "eventType": event.title,
        "tags": list(event.tags),
    }


class FanOutDispatcher:
    """Schedules the side effects of a created event."""

    def __init__(
        self,
        invalidator: CacheInvalidator,
        broadcaster: EventBroadcaster,
        jobs: JobQueue,
        tasks: TaskSet | None = None,
    ):
        self.invalidator = invalidator
        self.broadcaster = broadcaster
        self.jobs = jobs
        self.tasks = tasks or TaskSet("fanout")

    def dispatch(self, ctx: RequestContext, event: Event) -> None:
        """Start every side effect for ``event`` without waiting for any."""
        steps: list[tuple[str, Awaitable[Any]]] = [
            ("invalidate-channel", self.invalidator.invalidate_channel(event.channel_id)),
            ("invalidate-org", self.invalidator.invalidate_organization(event.organization_id)),
            (
                "broadcast",
                self.broadcaster.publish(
                    CacheKeys.broadcast_channel(event.channel_id),
                    BroadcastMessage(type="event", data=event.to_api()),
                ),
            ),
            (
                "notification-job",
                self.jobs.submit(EVENT_NOTIFICATIONS_TASK, notification_job_payload(event)),
            ),
        ]
        for step, work in steps:
            self.tasks.spawn(self._guard(ctx, step, event, work), name=f"{step}-{event.id}")

    async def _guard(
        self, ctx: RequestContext, step: str, event: Event, work: Awaitable[Any]
    ) -> None:
        try:
            await work
        except Exception as e:
            logger.error(
                f"Fan-out {step} failed: {e}",
                exc_info=True,
                extra=ctx.log_extra(event_id=event.id, channel_id=event.channel_id, step=step),
            )

    async def drain(self) -> None:
        """Wait for every scheduled side effect to finish."""
        await self.tasks.drain()
