"""Server-Sent Event streams of new events.

A stream is a polling loop over the cached query layer:

    connected -> (poll -> event* -> heartbeat -> sleep)* -> disconnect

Polls go through the realtime cache (3s buckets), so any number of open
streams on one channel cost about one store query per bucket window.
A failed poll is logged and the loop carries on after the usual sleep.

Example:
    streamer = EventStreamer(poll=channel_poller(repo, "ch_1", "org_1"),
                             is_disconnected=request.is_disconnected)
    return StreamingResponse(streamer.frames(), headers=SSE_HEADERS, ...)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import orjson

from beacon.config import settings
from beacon.events.models import Event
from beacon.events.repository import EventRepository

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

Poller = Callable[[datetime], Awaitable[list[Event]]]


def sse_frame(message: dict[str, Any]) -> str:
    return f"data: {orjson.dumps(message).decode()}\n\n"


def _never_disconnected() -> Awaitable[bool]:
    future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
    future.set_result(False)
    return future


class EventStreamer:
    """Turns a poll function into a stream of SSE frames.

    The cursor only moves forward. After each poll it advances to the
    newest delivered event, or to ``cursor_lag`` seconds before the poll
    started, whichever is later, so an event that a stale cache entry
    missed is still picked up by a later poll.
    """

    def __init__(
        self,
        poll: Poller,
        interval: float | None = None,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        cursor_lag: float | None = None,
        start: datetime | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log_extra: dict[str, Any] | None = None,
    ):
        self.poll = poll
        self.interval = interval if interval is not None else settings.stream_poll_interval
        self.is_disconnected = is_disconnected or _never_disconnected
        self.cursor_lag = timedelta(
            seconds=cursor_lag if cursor_lag is not None else settings.cache_ttl_realtime
        )
        self.cursor = start or datetime.now(UTC)
        self._sleep = sleep
        self._log_extra = log_extra or {}

    async def frames(self) -> AsyncIterator[str]:
        yield sse_frame({"type": "connected"})
        try:
            while not await self.is_disconnected():
                polled_at = datetime.now(UTC)
                try:
                    events = await self.poll(self.cursor)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error polling events: {e}", extra=self._log_extra)
                    await self._sleep(self.interval)
                    continue

                for event in sorted(events, key=lambda ev: ev.created_at):
                    yield sse_frame({"type": "event", "data": event.to_api()})

                self._advance(events, polled_at)
                yield sse_frame({"type": "heartbeat"})
                await self._sleep(self.interval)
        finally:
            logger.debug("Event stream closed", extra=self._log_extra)

    def _advance(self, events: list[Event], polled_at: datetime) -> None:
        candidates = [self.cursor, polled_at - self.cursor_lag]
        candidates.extend(event.created_at for event in events)
        self.cursor = max(candidates)


def channel_poller(repository: EventRepository, channel_id: str, organization_id: str) -> Poller:
    """Poll a channel through the realtime cache."""

    async def poll(after: datetime) -> list[Event]:
        return await repository.get_events_after(channel_id, organization_id, after)

    return poll


def organization_poller(repository: EventRepository, organization_id: str) -> Poller:
    """Poll the newest page of an organization's events."""

    async def poll(after: datetime) -> list[Event]:
        page = await repository.list_events_by_org(
            organization_id, page=1, limit=settings.stream_org_page_size
        )
        return [event for event in page.events if event.created_at > after]

    return poll
