"""Webhook registration (session authenticated, ``webhook:manage``).

- POST /api/channels/{channel_id}/webhooks

Secrets are encrypted before they are stored. URLs pointing at local or
private addresses are rejected with 400.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from beacon.api.deps import ServicesDep, require_permission
from beacon.api.errors import BadRequestError, InternalServerError, NotFoundError
from beacon.config import settings
from beacon.core.context import RequestContext
from beacon.persistence.repositories import WebhookRepository
from beacon.security.encryption import get_cipher
from beacon.security.rbac import Action
from beacon.security.urls import UnsafeUrlError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhooks"])

ManagerDep = Annotated[RequestContext, Depends(require_permission(Action.MANAGE_WEBHOOKS))]


class CreateWebhookRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    secret: str | None = Field(default=None, max_length=255)
    events: list[str] = Field(default_factory=lambda: ["all"])
    enabled: bool = True


@router.post("/channels/{channel_id}/webhooks", status_code=201)
async def create_webhook(
    channel_id: str,
    body: CreateWebhookRequest,
    ctx: ManagerDep,
    services: ServicesDep,
) -> ORJSONResponse:
    organization_id = ctx.organization_id or ""
    if await services.channels.get(channel_id, organization_id) is None:
        raise NotFoundError("Channel", channel_id)

    encrypted_secret = None
    if body.secret:
        if not settings.encryption_key:
            raise InternalServerError(
                error="Failed to create webhook", message="Secret encryption is not configured"
            )
        encrypted_secret = get_cipher().encrypt(body.secret)

    try:
        async with services.session_factory() as session:
            webhook = await WebhookRepository(session).create(
                channel_id,
                organization_id,
                body.url,
                encrypted_secret=encrypted_secret,
                events=body.events,
                enabled=body.enabled,
            )
            await session.commit()
    except UnsafeUrlError as e:
        raise BadRequestError(details=[{"path": "url", "message": str(e)}])

    logger.info(
        "Webhook created", extra=ctx.log_extra(webhook_id=webhook.id, channel_id=channel_id)
    )
    data: dict[str, Any] = {
        "id": webhook.id,
        "channelId": channel_id,
        "url": webhook.url,
        "events": list(webhook.events),
        "enabled": webhook.enabled,
        "hasSecret": encrypted_secret is not None,
    }
    return ORJSONResponse(
        status_code=201,
        content={"success": True, "data": data, "requestId": ctx.request_id},
    )
