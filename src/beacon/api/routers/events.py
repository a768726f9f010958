"""Dashboard event reads and deletes (session authenticated).

- GET    /api/channels/{channel_id}/events             - paginated, searchable
- GET    /api/events/stats                             - totals, users, tags
- DELETE /api/channels/{channel_id}/events/{event_id}  - permanent delete
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from beacon.api.deps import ServicesDep, require_permission
from beacon.api.errors import NotFoundError
from beacon.core.context import RequestContext
from beacon.events.repository import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from beacon.security.rbac import Action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["events"])

ReaderDep = Annotated[RequestContext, Depends(require_permission(Action.READ_EVENTS))]
DeleterDep = Annotated[RequestContext, Depends(require_permission(Action.DELETE_EVENTS))]


@router.get("/channels/{channel_id}/events")
async def list_channel_events(
    channel_id: str,
    ctx: ReaderDep,
    services: ServicesDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
    search: Annotated[str | None, Query(max_length=200)] = None,
) -> dict[str, Any]:
    organization_id = ctx.organization_id or ""
    if await services.channels.get(channel_id, organization_id) is None:
        raise NotFoundError("Channel", channel_id)

    result = await services.events.list_events(
        channel_id, organization_id, page=page, limit=limit, search=search or None
    )
    return {"success": True, "data": result.to_api(), "requestId": ctx.request_id}


@router.get("/events/stats")
async def event_stats(
    ctx: ReaderDep,
    services: ServicesDep,
    channel_id: Annotated[str | None, Query(alias="channelId")] = None,
    date_from: Annotated[datetime | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[datetime | None, Query(alias="dateTo")] = None,
) -> dict[str, Any]:
    """Aggregate stats of the organization, optionally one channel and a date range."""
    stats = await services.events.get_event_stats(
        ctx.organization_id or "", channel_id, date_from, date_to
    )
    return {"success": True, "data": stats, "requestId": ctx.request_id}


@router.delete("/channels/{channel_id}/events/{event_id}")
async def delete_event(
    channel_id: str,
    event_id: str,
    ctx: DeleterDep,
    services: ServicesDep,
) -> dict[str, Any]:
    """Delete an event of a channel the caller's organization owns."""
    organization_id = ctx.organization_id or ""
    event = await services.events.get_event_by_id(event_id, organization_id)
    if event is None or event.channel_id != channel_id:
        raise NotFoundError("Event", event_id)

    await services.events.delete_event(event_id, channel_id, organization_id)
    logger.info("Event deleted", extra=ctx.log_extra(event_id=event_id, channel_id=channel_id))
    return {"success": True, "data": {"id": event_id}, "requestId": ctx.request_id}
