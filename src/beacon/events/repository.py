"""Event store query/translation layer.

Every read goes through the query cache with a TTL tuned to its class:
listing (60s), realtime polling (3s), aggregate stats (300s). Cached values
are the raw pipe rows; translation into ``Event`` happens after the cache,
so a cache entry never carries Python-only types.

Writes go straight to the store and drop the affected cached views.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from beacon.cache.invalidation import CacheInvalidator
from beacon.cache.keys import CacheKeys, generate_cache_key
from beacon.cache.redis import QueryCache
from beacon.config import settings
from beacon.events.models import Event, format_store_datetime
from beacon.events.store import EventStoreClient, IngestRejectedError, IngestResponse

logger = logging.getLogger(__name__)

PIPE_EVENTS_PAGINATED = "get_events_paginated"
PIPE_STREAM_EVENTS = "stream_events"
PIPE_EVENT_BY_ID = "get_event_by_id"
PIPE_EVENT_STATS = "get_events_stats"

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
REALTIME_LIMIT = 100


@dataclass(frozen=True, slots=True)
class EventPage:
    """One page of events."""

    events: list[Event]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    def to_api(self) -> dict[str, Any]:
        return {
            "items": [event.to_api() for event in self.events],
            "metadata": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "totalPages": self.total_pages,
                "hasNextPage": self.has_more,
                "hasPreviousPage": self.page > 1,
            },
        }


def _quote(value: str) -> str:
    """Quote a value for a store delete condition."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _clamp_page(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


class EventRepository:
    """Cached reads and direct writes against the event store."""

    def __init__(self, client: EventStoreClient, cache: QueryCache):
        self.client = client
        self.cache = cache
        self.invalidator = CacheInvalidator(cache)
        self.datasource = settings.events_datasource

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create_event(self, event: Event, wait: bool = True) -> IngestResponse:
        """Append one event; zero accepted rows is a hard failure.

        Raises:
            IngestRejectedError: The store quarantined the row
        """
        result = await self.client.ingest(self.datasource, [event.to_store_row()], wait=wait)
        if result.successful_rows == 0:
            logger.error(
                "Event rejected by event store",
                extra={
                    "event_id": event.id,
                    "channel_id": event.channel_id,
                    "organization_id": event.organization_id,
                    "quarantined_rows": result.quarantined_rows,
                },
            )
            raise IngestRejectedError(result.quarantined_rows)
        logger.info(
            "Event written to event store",
            extra={
                "event_id": event.id,
                "channel_id": event.channel_id,
                "organization_id": event.organization_id,
                "waited": wait,
            },
        )
        return result

    async def create_event_batch(
        self, events: Sequence[Event], wait: bool = True
    ) -> IngestResponse:
        """Append many events in one request. Quarantined rows are logged, not raised."""
        result = await self.client.ingest(
            self.datasource, [event.to_store_row() for event in events], wait=wait
        )
        logger.info(
            "Event batch written to event store",
            extra={
                "total_events": len(events),
                "successful_rows": result.successful_rows,
                "quarantined_rows": result.quarantined_rows,
            },
        )
        if result.quarantined_rows > 0:
            logger.warning(
                "Some events quarantined during batch ingestion",
                extra={
                    "total_events": len(events),
                    "quarantined_rows": result.quarantined_rows,
                },
            )
        return result

    async def delete_event(self, event_id: str, channel_id: str, organization_id: str) -> None:
        """Permanently delete an event owned by the channel and organization."""
        condition = (
            f"id = {_quote(event_id)} AND channel_id = {_quote(channel_id)} "
            f"AND organization_id = {_quote(organization_id)}"
        )
        await self.client.delete_data(self.datasource, condition)
        await self.invalidator.invalidate_channel(channel_id)
        await self.invalidator.invalidate_organization(organization_id)
        logger.info(
            "Event deleted from event store",
            extra={
                "event_id": event_id,
                "channel_id": channel_id,
                "organization_id": organization_id,
            },
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_events(
        self,
        channel_id: str,
        organization_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
    ) -> EventPage:
        """Page through a channel's events, newest first."""
        page, limit = _clamp_page(page, limit)
        key = generate_cache_key(
            CacheKeys.CHANNEL_LIST,
            {
                "channelId": channel_id,
                "orgId": organization_id,
                "page": page,
                "limit": limit,
                "search": search or "",
            },
        )

        async def fetch() -> dict[str, Any]:
            result = await self.client.query_pipe(
                PIPE_EVENTS_PAGINATED,
                {
                    "channel_id": channel_id,
                    "organization_id": organization_id,
                    "search": search or None,
                    "limit": limit,
                    "offset": (page - 1) * limit,
                },
            )
            return {"rows": result.data, "total": result.meta.get("total")}

        cached = await self.cache.with_cache(
            key,
            settings.cache_ttl_list,
            fetch,
            index_keys=[CacheKeys.channel_list_view(channel_id)],
        )
        return self._to_page(cached, page, limit)

    async def list_events_by_org(
        self,
        organization_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        project_id: str | None = None,
    ) -> EventPage:
        """Page through every event of an organization, optionally one project."""
        page, limit = _clamp_page(page, limit)
        key = generate_cache_key(
            CacheKeys.ORG_LIST,
            {
                "orgId": organization_id,
                "projectId": project_id or "all",
                "page": page,
                "limit": limit,
            },
        )

        async def fetch() -> dict[str, Any]:
            result = await self.client.query_pipe(
                PIPE_EVENTS_PAGINATED,
                {
                    "organization_id": organization_id,
                    "project_id": project_id,
                    "limit": limit,
                    "offset": (page - 1) * limit,
                },
            )
            return {"rows": result.data, "total": result.meta.get("total")}

        cached = await self.cache.with_cache(
            key,
            settings.cache_ttl_list,
            fetch,
            index_keys=[CacheKeys.organization_list_view(organization_id)],
        )
        return self._to_page(cached, page, limit)

    async def get_events_after(
        self,
        channel_id: str,
        organization_id: str,
        after: datetime,
        limit: int = REALTIME_LIMIT,
    ) -> list[Event]:
        """Events of a channel created strictly after ``after``.

        The store is queried from the start of the cursor's bucket, so every
        poller whose cursor falls in the same bucket shares one cache entry.
        Each caller then keeps only the events newer than its own cursor.
        """
        after_ms = int(after.timestamp() * 1000)
        bucket_ms = CacheKeys.realtime_bucket(after_ms, settings.realtime_bucket_seconds)
        key = generate_cache_key(
            CacheKeys.REALTIME,
            {"channelId": channel_id, "orgId": organization_id, "since": bucket_ms, "limit": limit},
        )

        async def fetch() -> list[dict[str, Any]]:
            since = datetime.fromtimestamp(bucket_ms / 1000, tz=UTC)
            result = await self.client.query_pipe(
                PIPE_STREAM_EVENTS,
                {
                    "channel_id": channel_id,
                    "organization_id": organization_id,
                    "since": format_store_datetime(since),
                    "limit": limit,
                },
            )
            return result.data

        rows = await self.cache.with_cache(key, settings.cache_ttl_realtime, fetch)
        events = [Event.from_store_row(row) for row in rows]
        return [event for event in events if event.created_at > after]

    async def get_event_by_id(
        self, event_id: str, organization_id: str | None = None
    ) -> Event | None:
        """Fetch one event, uncached. With ``organization_id``, foreign events are hidden."""
        result = await self.client.query_pipe(PIPE_EVENT_BY_ID, {"event_id": event_id})
        if not result.data:
            logger.warning("Event not found in event store", extra={"event_id": event_id})
            return None
        event = Event.from_store_row(result.data[0])
        if organization_id is not None and event.organization_id != organization_id:
            return None
        return event

    async def get_event_stats(
        self,
        organization_id: str,
        channel_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict[str, Any]:
        """Totals, unique users and tag distribution."""
        key = generate_cache_key(
            CacheKeys.STATS,
            {
                "orgId": organization_id,
                "channelId": channel_id or "all",
                "dateFrom": int(date_from.timestamp() * 1000) if date_from else "none",
                "dateTo": int(date_to.timestamp() * 1000) if date_to else "none",
            },
        )

        async def fetch() -> dict[str, Any]:
            result = await self.client.query_pipe(
                PIPE_EVENT_STATS,
                {
                    "organization_id": organization_id,
                    "channel_id": channel_id,
                    "date_from": format_store_datetime(date_from) if date_from else None,
                    "date_to": format_store_datetime(date_to) if date_to else None,
                },
            )
            row = result.data[0] if result.data else {}
            return {
                "total_events": int(row.get("total_events") or 0),
                "unique_users": int(row.get("unique_users") or 0),
                "tags_distribution": row.get("tags_distribution") or {},
            }

        index_keys = [CacheKeys.organization_stats_view(organization_id)]
        if channel_id:
            index_keys.append(CacheKeys.channel_stats_view(channel_id))
        return await self.cache.with_cache(key, settings.cache_ttl_stats, fetch, index_keys)

    @staticmethod
    def _to_page(cached: dict[str, Any], page: int, limit: int) -> EventPage:
        events = [Event.from_store_row(row) for row in cached.get("rows") or []]
        total = cached.get("total")
        if not isinstance(total, int):
            total = (page - 1) * limit + len(events)
        return EventPage(events=events, total=total, page=page, limit=limit)
