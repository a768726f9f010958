"""Event ingestion.

Single events:
1. replay a stored response when the Idempotency-Key was seen before
2. resolve the channel by name (created on first use)
3. snapshot the organization's retention tier onto the event
4. map an aliased ``userId`` to the canonical user
5. write synchronously and require the store to accept the row
6. record the response under the Idempotency-Key (awaited)
7. hand the event to fan-out without waiting for it

Batches resolve every distinct channel name, organization and user alias
once, then issue one write.

The idempotency check and record are not atomic: two first-time requests
with the same key that overlap in time can both write an event.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from beacon.cache.idempotency import IdempotencyStore
from beacon.channels.directory import ChannelDirectory, ChannelRef, normalize_channel_name
from beacon.core.context import RequestContext
from beacon.events.fanout import FanOutDispatcher
from beacon.events.identity import IdentityService
from beacon.events.models import Event, EventSource, isoformat_ms
from beacon.events.repository import EventRepository
from beacon.events.store import IngestRejectedError
from beacon.persistence.repositories import DEFAULT_RETENTION_TIER

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


class IngestEventRequest(BaseModel):
    """Body of ``POST /api/v1/events``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    channel_name: str = Field(alias="channelName", min_length=1, max_length=255)
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    icon: str | None = Field(default=None, max_length=50)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = Field(default=None, alias="userId", max_length=255)
    notify: bool = True
    source: EventSource = EventSource.API


class IngestBatchRequest(BaseModel):
    """Body of ``POST /api/v1/events/batch``."""

    events: list[IngestEventRequest] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Outcome of a single ingest call."""

    status: int
    body: dict[str, Any]
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class BatchIngestResult:
    successful_rows: int
    quarantined_rows: int
    events: list[Event]


def _scope(ctx: RequestContext) -> tuple[str, str]:
    if not ctx.organization_id or not ctx.project_id:
        raise ValueError("Ingestion requires an organization and a project")
    return ctx.organization_id, ctx.project_id


def _build_event(
    request: IngestEventRequest,
    channel: ChannelRef,
    retention_tier: str,
    user_id: str | None,
) -> Event:
    return Event(
        channel_id=channel.id,
        project_id=channel.project_id,
        organization_id=channel.organization_id,
        retention_tier=retention_tier,
        title=request.title,
        description=request.description,
        icon=request.icon,
        tags=tuple(request.tags),
        metadata=request.metadata,
        user_id=user_id,
        notify=request.notify,
        source=request.source,
    )


class EventIngestionService:
    """Validated requests in, durably written and fanned-out events out."""

    def __init__(
        self,
        directory: ChannelDirectory,
        repository: EventRepository,
        idempotency: IdempotencyStore,
        fanout: FanOutDispatcher,
        identity: IdentityService,
    ):
        self.directory = directory
        self.repository = repository
        self.idempotency = idempotency
        self.fanout = fanout
        self.identity = identity

    async def ingest(
        self,
        ctx: RequestContext,
        request: IngestEventRequest,
        idempotency_key: str | None = None,
    ) -> IngestResult:
        """Create one event.

        Raises:
            InvalidChannelNameError: Channel name has no usable characters
            EventStoreError: The write failed or no row was accepted
        """
        organization_id, project_id = _scope(ctx)

        if idempotency_key:
            stored = await self.idempotency.get(organization_id, idempotency_key)
            if stored is not None:
                logger.info(
                    "Idempotent request replay",
                    extra=ctx.log_extra(
                        idempotency_key=idempotency_key, channel_name=request.channel_name
                    ),
                )
                return IngestResult(status=stored.status, body=stored.body, replayed=True)

        channel = await self.directory.get_or_create(
            project_id,
            organization_id,
            request.channel_name,
            icon=request.icon,
            description=request.description,
        )
        retention_tier = await self.directory.retention_tier(organization_id)
        user_id = await self._resolve_user(ctx, request.user_id)

        event = _build_event(request, channel, retention_tier, user_id)
        await self.repository.create_event(event, wait=True)

        body = {
            "success": True,
            "data": {
                "id": event.id,
                "channelId": channel.id,
                "channelName": channel.name,
                "title": event.title,
                "createdAt": isoformat_ms(event.created_at),
            },
            "requestId": ctx.request_id,
        }

        if idempotency_key:
            await self._remember(ctx, idempotency_key, body)

        self.fanout.dispatch(ctx, event)
        logger.info(
            "Event created",
            extra=ctx.log_extra(
                event_id=event.id, channel_id=channel.id, channel_name=channel.name
            ),
        )
        return IngestResult(status=201, body=body)

    async def ingest_batch(
        self, ctx: RequestContext, requests: Sequence[IngestEventRequest]
    ) -> BatchIngestResult:
        """Create many events with one write.

        Raises:
            IngestRejectedError: The store accepted none of the rows
        """
        organization_id, project_id = _scope(ctx)
        if not requests:
            return BatchIngestResult(successful_rows=0, quarantined_rows=0, events=[])

        channels = await self.directory.resolve_many(
            project_id, organization_id, (r.channel_name for r in requests)
        )
        tiers = await self.directory.retention_tiers({organization_id})
        aliases = await self._resolve_users(ctx, (r.user_id for r in requests if r.user_id))

        events = [
            _build_event(
                request,
                channels[normalize_channel_name(request.channel_name)],
                tiers.get(organization_id, DEFAULT_RETENTION_TIER),
                aliases.get(request.user_id, request.user_id) if request.user_id else None,
            )
            for request in requests
        ]

        result = await self.repository.create_event_batch(events, wait=True)
        if result.successful_rows == 0:
            raise IngestRejectedError(result.quarantined_rows)

        for event in events:
            self.fanout.dispatch(ctx, event)

        logger.info(
            "Event batch created",
            extra=ctx.log_extra(
                total_events=len(events),
                distinct_channels=len(channels),
                successful_rows=result.successful_rows,
                quarantined_rows=result.quarantined_rows,
            ),
        )
        return BatchIngestResult(
            successful_rows=result.successful_rows,
            quarantined_rows=result.quarantined_rows,
            events=events,
        )

    async def _resolve_user(self, ctx: RequestContext, user_id: str | None) -> str | None:
        if not user_id:
            return None
        resolved = await self.identity.resolve_alias(ctx.organization_id or "", user_id)
        if resolved and resolved != user_id:
            logger.info(
                "Resolved userId from alias",
                extra=ctx.log_extra(original=user_id, resolved=resolved),
            )
            return resolved
        return user_id

    async def _resolve_users(self, ctx: RequestContext, user_ids: Iterable[str]) -> dict[str, str]:
        resolved: dict[str, str] = {}
        for user_id in dict.fromkeys(user_ids):
            canonical = await self._resolve_user(ctx, user_id)
            if canonical:
                resolved[user_id] = canonical
        return resolved

    async def _remember(self, ctx: RequestContext, key: str, body: dict[str, Any]) -> None:
        try:
            await self.idempotency.store(ctx.organization_id or "", key, 201, body)
        except Exception as e:
            # The event exists; a retry with this key will create a duplicate
            logger.error(
                f"Failed to store idempotent response: {e}",
                extra=ctx.log_extra(idempotency_key=key),
            )
