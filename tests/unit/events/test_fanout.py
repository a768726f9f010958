"""Tests for post-write fan-out."""

from typing import Any

import orjson
import pytest

from beacon.cache.invalidation import CacheInvalidator, EventBroadcaster
from beacon.cache.redis import QueryCache
from beacon.core.context import RequestContext
from beacon.events.fanout import EVENT_NOTIFICATIONS_TASK, FanOutDispatcher
from beacon.events.models import Event
from beacon.jobs.queue import QUEUE_PENDING, JobQueue


class BrokenQueue(JobQueue):
    async def submit(self, task: str, payload: dict[str, Any] | None = None, **_: Any) -> str:
        raise ConnectionError("queue down")


def make_event() -> Event:
    return Event(
        channel_id="ch_1",
        project_id="proj_1",
        organization_id="org_1",
        title="Deploy finished",
        tags=("prod",),
    )


def make_dispatcher(fake_redis, queue: JobQueue | None = None) -> FanOutDispatcher:
    return FanOutDispatcher(
        CacheInvalidator(QueryCache(fake_redis)),
        EventBroadcaster(fake_redis),
        queue or JobQueue(fake_redis),
    )


class TestFanOutDispatcher:
    """Test the side effects of a created event."""

    @pytest.mark.asyncio
    async def test_all_steps_run(self, fake_redis) -> None:
        """Views are dropped, the event is published and a job is queued."""
        fake_redis.sets["events:channel:ch_1:list"] = {b"events:channel:page:1"}
        fake_redis.values["events:channel:page:1"] = b"{}"
        fake_redis.sets["events:org:org_1:stats"] = {b"events:stats:org"}
        dispatcher = make_dispatcher(fake_redis)
        event = make_event()

        dispatcher.dispatch(RequestContext(request_id="req-1"), event)
        await dispatcher.drain()

        assert "events:channel:page:1" not in fake_redis.values
        assert "events:org:org_1:stats" not in fake_redis.sets

        channel, raw = fake_redis.published[0]
        assert channel == "events:channel:ch_1"
        message = orjson.loads(raw)
        assert message["type"] == "event"
        assert message["data"]["id"] == event.id

        assert len(fake_redis.lists[QUEUE_PENDING]) == 1

    @pytest.mark.asyncio
    async def test_notification_job_payload(self, fake_redis) -> None:
        """The queued job carries the event's routing fields."""
        queue = JobQueue(fake_redis)
        dispatcher = make_dispatcher(fake_redis, queue)
        event = make_event()

        dispatcher.dispatch(RequestContext(), event)
        await dispatcher.drain()

        job_id = fake_redis.lists[QUEUE_PENDING][0].decode()
        job = await queue.get_job(job_id)
        assert job is not None
        assert job.task == EVENT_NOTIFICATIONS_TASK
        assert job.payload == {
            "eventId": event.id,
            "channelId": "ch_1",
            "organizationId": "org_1",
            "projectId": "proj_1",
            "notify": True,
            "eventType": "Deploy finished",
            "tags": ["prod"],
        }

    @pytest.mark.asyncio
    async def test_failing_step_does_not_block_others(self, fake_redis) -> None:
        """A queue failure is logged and the broadcast still happens."""
        dispatcher = make_dispatcher(fake_redis, BrokenQueue(fake_redis))

        dispatcher.dispatch(RequestContext(), make_event())
        await dispatcher.drain()

        assert len(fake_redis.published) == 1
        assert QUEUE_PENDING not in fake_redis.lists

    @pytest.mark.asyncio
    async def test_redis_outage_is_swallowed(self, fake_redis) -> None:
        """Dispatch never raises, even when every step fails."""
        fake_redis.fail = True
        dispatcher = make_dispatcher(fake_redis)

        dispatcher.dispatch(RequestContext(), make_event())
        await dispatcher.drain()

        assert fake_redis.published == []
