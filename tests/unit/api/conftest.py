"""Fixtures for API tests: the app wired to in-memory fakes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import httpx
import pytest_asyncio
from fastapi import FastAPI

from beacon.api.app import create_app
from beacon.api.services import Services, build_services
from beacon.config import settings
from beacon.persistence.repositories import hash_token
from beacon.persistence.tables import SessionTable


@pytest_asyncio.fixture
async def services(fake_redis, session_factory, store_client) -> AsyncIterator[Services]:
    services = build_services(fake_redis, session_factory, store_client)
    yield services
    await services.fanout.drain()
    await services.cache.drain()


@pytest_asyncio.fixture
async def app(services: Services) -> FastAPI:
    app = create_app(use_lifespan=False)
    app.state.services = services
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://beacon.test") as client:
        yield client


@pytest_asyncio.fixture
async def api_client(client: httpx.AsyncClient, tenant) -> httpx.AsyncClient:
    """Client sending the tenant's API key."""
    client.headers["Authorization"] = f"Bearer {tenant.api_key}"
    return client


@pytest_asyncio.fixture
async def admin_client(client: httpx.AsyncClient, tenant) -> httpx.AsyncClient:
    """Client carrying the tenant's admin session cookie."""
    client.cookies.set(settings.session_cookie_name, tenant.session_token)
    return client


@pytest_asyncio.fixture
async def member_client(client: httpx.AsyncClient, session_factory, tenant) -> httpx.AsyncClient:
    """Client carrying a member session of the tenant's organization."""
    async with session_factory() as session:
        session.add(
            SessionTable(
                token_hash=hash_token("session-token-member"),
                user_id="user_2",
                active_organization_id=tenant.organization_id,
                role="member",
                expires_at=datetime.now(UTC) + timedelta(days=1),
            )
        )
        await session.commit()
    client.cookies.set(settings.session_cookie_name, "session-token-member")
    return client
