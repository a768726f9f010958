"""Versioned ingestion API (API key authenticated).

- POST /api/v1/events        - create one event (Idempotency-Key aware)
- POST /api/v1/events/batch  - create up to 100 events with one write
- POST /api/v1/identify      - upsert a user identity and its aliases

Every response of an authenticated call carries the key's X-RateLimit-*
headers, including error responses.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Header
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field

from beacon.api.deps import ApiKeyDep, ServicesDep
from beacon.api.errors import BadRequestError, InternalServerError
from beacon.cache.idempotency import REPLAY_HEADER, normalize_key
from beacon.channels.directory import InvalidChannelNameError
from beacon.events.ingestion import IngestBatchRequest, IngestEventRequest
from beacon.events.store import EventStoreError, IngestRejectedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["ingest"])


class IdentifyRequest(BaseModel):
    """Body of ``POST /api/v1/identify``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(alias="userId", min_length=1, max_length=255)
    properties: dict[str, Any] = Field(default_factory=dict)
    aliases: list[str] = Field(default_factory=list)


REJECTED_MESSAGE = "The event store rejected the event"


def _failure_message(e: Exception) -> str | None:
    """Client-facing detail for a failed write; store responses stay in the log."""
    return REJECTED_MESSAGE if isinstance(e, IngestRejectedError) else None


def _channel_name_error(e: InvalidChannelNameError, headers: dict[str, str]) -> BadRequestError:
    return BadRequestError(
        details=[{"path": "channelName", "message": str(e)}],
        headers=headers,
    )


@router.post("/events", status_code=201)
async def create_event(
    body: IngestEventRequest,
    auth: ApiKeyDep,
    services: ServicesDep,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> ORJSONResponse:
    """Create one event.

    A repeated Idempotency-Key replays the stored response with
    ``X-Idempotent-Replay: true`` and fresh rate-limit headers.
    """
    ctx = auth.ctx
    headers = auth.rate_limit.headers()

    try:
        key = normalize_key(idempotency_key)
    except ValueError as e:
        raise BadRequestError(
            details=[{"path": "Idempotency-Key", "message": str(e)}], headers=headers
        )

    try:
        result = await services.ingestion.ingest(ctx, body, idempotency_key=key)
    except InvalidChannelNameError as e:
        raise _channel_name_error(e, headers)
    except Exception as e:
        logger.error(
            f"Failed to create event: {e}",
            exc_info=True,
            extra=ctx.log_extra(channel_name=body.channel_name),
        )
        raise InternalServerError(
            error="Failed to create event",
            message=_failure_message(e),
            headers=headers,
        )

    if result.replayed:
        headers[REPLAY_HEADER] = "true"
    return ORJSONResponse(status_code=result.status, content=result.body, headers=headers)


@router.post("/events/batch", status_code=201)
async def create_event_batch(
    body: IngestBatchRequest,
    auth: ApiKeyDep,
    services: ServicesDep,
) -> ORJSONResponse:
    """Create many events with one write; partial quarantine still succeeds."""
    ctx = auth.ctx
    headers = auth.rate_limit.headers()

    try:
        result = await services.ingestion.ingest_batch(ctx, body.events)
    except InvalidChannelNameError as e:
        raise _channel_name_error(e, headers)
    except Exception as e:
        logger.error(
            f"Failed to create event batch: {e}",
            exc_info=True,
            extra=ctx.log_extra(total_events=len(body.events)),
        )
        raise InternalServerError(
            error="Failed to create events",
            message=_failure_message(e),
            headers=headers,
        )

    content = {
        "success": True,
        "data": {
            "accepted": result.successful_rows,
            "quarantined": result.quarantined_rows,
            "ids": [event.id for event in result.events],
        },
        "requestId": ctx.request_id,
    }
    return ORJSONResponse(status_code=201, content=content, headers=headers)


@router.post("/identify")
async def identify(
    body: IdentifyRequest,
    auth: ApiKeyDep,
    services: ServicesDep,
) -> ORJSONResponse:
    ctx = auth.ctx
    headers = auth.rate_limit.headers()
    try:
        identity = await services.identity.identify(
            ctx, body.user_id, body.properties, body.aliases
        )
    except EventStoreError as e:
        logger.error(f"Failed to identify user: {e}", extra=ctx.log_extra())
        raise InternalServerError(error="Failed to identify user", headers=headers)

    content = {"success": True, "data": identity, "requestId": ctx.request_id}
    return ORJSONResponse(status_code=200, content=content, headers=headers)
