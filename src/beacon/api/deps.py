"""Shared FastAPI dependencies for Beacon routers.

- ``get_services``: the service graph built in the lifespan
- ``require_api_key``: Bearer API key auth plus per-key rate limiting
- ``require_session``: cookie session auth for dashboard reads and streams
- ``require_permission``: RBAC guard on top of a session
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from beacon.api.errors import ForbiddenError, TooManyRequestsError, UnauthorizedError
from beacon.api.rate_limit import RateLimitInfo
from beacon.api.services import Services
from beacon.config import settings
from beacon.core.context import RequestContext
from beacon.persistence.repositories import ApiKeyRepository, SessionRepository
from beacon.security.rbac import Action, has_permission

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def get_services(request: Request) -> Services:
    return request.app.state.services  # type: ignore[no-any-return]


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or RequestContext().request_id


@dataclass(frozen=True, slots=True)
class ApiKeyAuth:
    """An authenticated API key request."""

    ctx: RequestContext
    rate_limit: RateLimitInfo


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if not header.lower().startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    return token or None


async def require_api_key(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
) -> ApiKeyAuth:
    """Authenticate ``Authorization: Bearer <key>`` and count it against the key's limit.

    Raises:
        UnauthorizedError: Missing, unknown or disabled key, or a key without scope
        TooManyRequestsError: The key is over its rate limit
    """
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError()

    async with services.session_factory() as session:
        api_key = await ApiKeyRepository(session).verify(token)

    if api_key is None or not api_key.organization_id or not api_key.project_id:
        logger.warning(
            "API key authentication failed",
            extra={"request_id": request_id(request), "key_prefix": token[:8]},
        )
        raise UnauthorizedError()

    ctx = RequestContext(
        request_id=request_id(request),
        organization_id=api_key.organization_id,
        project_id=api_key.project_id,
        api_key_id=api_key.id,
    )
    info = await services.rate_limiter.check(api_key.id, api_key.rate_limit)
    if not info.allowed:
        logger.warning("Rate limit exceeded", extra=ctx.log_extra(limit=info.limit))
        raise TooManyRequestsError(headers=info.headers())
    # Body validation runs after this dependency; its 400 reuses these headers
    request.state.rate_limit_headers = info.headers()
    return ApiKeyAuth(ctx=ctx, rate_limit=info)


async def require_session(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
) -> RequestContext:
    """Authenticate the session cookie; the session must have an active organization."""
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise UnauthorizedError()

    async with services.session_factory() as session:
        row = await SessionRepository(session).get_active(token)

    if row is None or not row.active_organization_id:
        raise UnauthorizedError()

    return RequestContext(
        request_id=request_id(request),
        organization_id=row.active_organization_id,
        user_id=row.user_id,
        role=row.role,
    )


def require_permission(action: Action) -> Callable[..., Awaitable[RequestContext]]:
    """Dependency factory: a session whose role may perform ``action``."""

    async def dependency(
        ctx: Annotated[RequestContext, Depends(require_session)],
    ) -> RequestContext:
        if not has_permission(ctx.role, action):
            logger.info(
                "Permission denied", extra=ctx.log_extra(action=action.value, role=ctx.role)
            )
            raise ForbiddenError()
        return ctx

    return dependency


ServicesDep = Annotated[Services, Depends(get_services)]
ApiKeyDep = Annotated[ApiKeyAuth, Depends(require_api_key)]
SessionDep = Annotated[RequestContext, Depends(require_session)]
