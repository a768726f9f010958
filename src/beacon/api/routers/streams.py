"""Server-Sent Event streams (session authenticated).

- GET /api/channels/{channel_id}/events/stream - one channel
- GET /api/stream                              - every channel of the active organization
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from beacon.api.deps import ServicesDep, SessionDep
from beacon.api.errors import NotFoundError
from beacon.streaming.sse import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    EventStreamer,
    channel_poller,
    organization_poller,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["streams"])


@router.get("/channels/{channel_id}/events/stream")
async def stream_channel_events(
    channel_id: str,
    request: Request,
    ctx: SessionDep,
    services: ServicesDep,
) -> StreamingResponse:
    """Stream new events of one channel."""
    organization_id = ctx.organization_id or ""
    channel = await services.channels.get(channel_id, organization_id)
    if channel is None:
        raise NotFoundError("Channel", channel_id)

    log_extra = ctx.log_extra(channel_id=channel_id)
    logger.info("Channel stream opened", extra=log_extra)
    streamer = EventStreamer(
        poll=channel_poller(services.events, channel_id, organization_id),
        is_disconnected=request.is_disconnected,
        log_extra=log_extra,
    )
    return StreamingResponse(streamer.frames(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/stream")
async def stream_organization_events(
    request: Request,
    ctx: SessionDep,
    services: ServicesDep,
) -> StreamingResponse:
    """Stream new events across the caller's active organization."""
    organization_id = ctx.organization_id or ""
    log_extra = ctx.log_extra()
    logger.info("Organization stream opened", extra=log_extra)
    streamer = EventStreamer(
        poll=organization_poller(services.events, organization_id),
        is_disconnected=request.is_disconnected,
        log_extra=log_extra,
    )
    return StreamingResponse(streamer.frames(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)
