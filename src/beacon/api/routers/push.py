"""Browser push subscription management (session authenticated).

- GET    /api/push/vapid-public-key  - key the browser subscribes with
- POST   /api/push/subscriptions     - register or refresh this browser
- DELETE /api/push/subscriptions     - remove this browser
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from beacon.api.deps import ServicesDep, SessionDep, require_permission
from beacon.api.errors import NotFoundError, UnauthorizedError
from beacon.core.context import RequestContext
from beacon.persistence.repositories import PushSubscriptionRepository
from beacon.security.rbac import Action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push", tags=["push"])

SubscriberDep = Annotated[RequestContext, Depends(require_permission(Action.SUBSCRIBE_PUSH))]


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscriptionData(BaseModel):
    endpoint: HttpUrl
    keys: SubscriptionKeys


class SubscribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription: SubscriptionData
    channel_ids: list[str] = Field(default_factory=list, alias="channelIds")


class UnsubscribeRequest(BaseModel):
    endpoint: HttpUrl


def _user_of(ctx: RequestContext) -> str:
    if not ctx.user_id:
        raise UnauthorizedError()
    return ctx.user_id


@router.get("/vapid-public-key")
async def vapid_public_key(ctx: SessionDep, services: ServicesDep) -> dict[str, Any]:
    return {
        "success": True,
        "data": {"publicKey": services.push.public_key},
        "requestId": ctx.request_id,
    }


@router.post("/subscriptions", status_code=201)
async def subscribe(
    body: SubscribeRequest,
    ctx: SubscriberDep,
    services: ServicesDep,
) -> dict[str, Any]:
    """Store the browser's subscription; empty ``channelIds`` means every channel."""
    user_id = _user_of(ctx)
    async with services.session_factory() as session:
        subscription = await PushSubscriptionRepository(session).upsert(
            ctx.organization_id or "",
            user_id,
            str(body.subscription.endpoint),
            body.subscription.keys.p256dh,
            body.subscription.keys.auth,
            channel_ids=body.channel_ids,
        )
        await session.commit()

    logger.info("Push subscription saved", extra=ctx.log_extra(subscription_id=subscription.id))
    return {
        "success": True,
        "data": {"id": subscription.id, "channelIds": list(subscription.channel_ids)},
        "requestId": ctx.request_id,
    }


@router.delete("/subscriptions")
async def unsubscribe(
    body: UnsubscribeRequest,
    ctx: SubscriberDep,
    services: ServicesDep,
) -> dict[str, Any]:
    user_id = _user_of(ctx)
    async with services.session_factory() as session:
        deleted = await PushSubscriptionRepository(session).delete_by_endpoint(
            user_id, str(body.endpoint)
        )
        await session.commit()

    if not deleted:
        raise NotFoundError("Push subscription")
    logger.info("Push subscription removed", extra=ctx.log_extra())
    return {"success": True, "data": {"deleted": True}, "requestId": ctx.request_id}
