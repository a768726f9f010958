"""Shared unit test fixtures.

- ``fake_redis``: in-memory stand-in for the ``redis.asyncio`` commands Beacon uses
- ``event_store``: in-memory event store served through ``httpx.MockTransport``
- ``session_factory``: SQLite (aiosqlite) database with every table created
- ``tenant``: one organization, project, API key and session row
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import orjson
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from beacon.events.models import parse_store_datetime
from beacon.events.store import EventStoreClient
from beacon.persistence.repositories import ApiKeyRepository, hash_token
from beacon.persistence.tables import (
    Base,
    OrganizationTable,
    ProjectTable,
    SessionTable,
)


def _b(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode()


class FakePipeline:
    """Queues commands and runs them in order on ``execute``."""

    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Any:
        def queue(*args: Any, **kwargs: Any) -> FakePipeline:
            self.calls.append((name, args, kwargs))
            return self

        return queue

    async def execute(self) -> list[Any]:
        if self.redis.fail:
            raise ConnectionError("redis down")
        results = []
        for name, args, kwargs in self.calls:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.calls = []
        return results

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class FakeRedis:
    """Just enough of Redis for the cache, idempotency, queue and rate limiter."""

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.sets: dict[str, set[bytes]] = {}
        self.lists: dict[str, list[bytes]] = {}
        self.zsets: dict[str, dict[bytes, float]] = {}
        self.published: list[tuple[str, bytes]] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._check()
        self.values[key] = _b(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        return await self.set(key, value, ex=ttl)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            for store in (self.values, self.sets, self.lists, self.zsets):
                if key in store:
                    del store[key]
                    removed += 1
        return removed

    async def expire(self, key: str, ttl: int) -> bool:
        self._check()
        self.ttls[key] = ttl
        return True

    async def sadd(self, key: str, *members: Any) -> int:
        self._check()
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(_b(m) for m in members)
        return len(bucket) - before

    async def smembers(self, key: str) -> set[bytes]:
        self._check()
        return set(self.sets.get(key, set()))

    async def lpush(self, key: str, *values: Any) -> int:
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, _b(value))
        return len(items)

    async def lrem(self, key: str, count: int, value: Any) -> int:
        self._check()
        items = self.lists.get(key, [])
        target = _b(value)
        if target in items:
            items.remove(target)
            return 1
        return 0

    async def llen(self, key: str) -> int:
        self._check()
        return len(self.lists.get(key, []))

    async def lrange(self, key: str, start: int, end: int) -> list[bytes]:
        self._check()
        items = self.lists.get(key, [])
        return items[start : None if end == -1 else end + 1]

    async def brpoplpush(self, source: str, destination: str, timeout: int = 0) -> bytes | None:
        self._check()
        items = self.lists.get(source)
        if not items:
            return None
        value = items.pop()
        self.lists.setdefault(destination, []).insert(0, value)
        return value

    async def publish(self, channel: str, message: Any) -> int:
        self._check()
        self.published.append((channel, _b(message)))
        return 0

    async def zremrangebyscore(self, key: str, minimum: float, maximum: float) -> int:
        zset = self.zsets.get(key, {})
        stale = [m for m, score in zset.items() if minimum <= score <= maximum]
        for member in stale:
            del zset[member]
        return len(stale)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def zadd(self, key: str, mapping: dict[Any, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if _b(m) not in zset)
        zset.update({_b(m): score for m, score in mapping.items()})
        return added

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


class FakeEventStore:
    """In-memory event store behind the store's HTTP API.

    ``quarantine`` makes ingestion quarantine every row whose title is in it;
    ``fail_status`` makes every request answer with that status.
    """

    def __init__(self) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.quarantine: set[str] = set()
        self.aliases: dict[tuple[str, str], str] = {}
        self.fail_status: int | None = None

    def events(self) -> list[dict[str, Any]]:
        return self.rows.get("events", [])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="store unavailable")

        path = request.url.path
        if path == "/v0/events":
            return self._ingest(request)
        if path.startswith("/v0/pipes/"):
            name = path.removeprefix("/v0/pipes/").removesuffix(".json")
            return self._pipe(name, dict(request.url.params))
        if path.startswith("/v0/datasources/") and path.endswith("/delete"):
            return httpx.Response(200, json={"job_id": "delete-1"})
        return httpx.Response(404, json={"error": "not found"})

    def _ingest(self, request: httpx.Request) -> httpx.Response:
        datasource = request.url.params["name"]
        rows = [orjson.loads(line) for line in request.content.splitlines() if line.strip()]
        accepted = [row for row in rows if row.get("title") not in self.quarantine]
        self.rows.setdefault(datasource, []).extend(accepted)
        return httpx.Response(
            202,
            json={
                "successful_rows": len(accepted),
                "quarantined_rows": len(rows) - len(accepted),
            },
        )

    def _pipe(self, name: str, params: dict[str, str]) -> httpx.Response:
        events = self.events()
        if name == "get_event_by_id":
            data = [row for row in events if row["id"] == params["event_id"]]
        elif name == "stream_events":
            since = parse_store_datetime(params["since"])
            data = [
                row
                for row in events
                if row["channel_id"] == params["channel_id"]
                and parse_store_datetime(row["created_at"]) >= since
            ]
        elif name == "get_events_paginated":
            data = [
                row
                for row in events
                if row["organization_id"] == params["organization_id"]
                and ("channel_id" not in params or row["channel_id"] == params["channel_id"])
            ]
            data.sort(key=lambda row: row["created_at"], reverse=True)
            offset, limit = int(params.get("offset", 0)), int(params.get("limit", 20))
            return httpx.Response(
                200, json={"data": data[offset : offset + limit], "meta": {"total": len(data)}}
            )
        elif name == "get_events_stats":
            data = [
                {
                    "total_events": len(events),
                    "unique_users": len({row["user_id"] for row in events if row["user_id"]}),
                    "tags_distribution": {},
                }
            ]
        elif name == "resolve_user_alias":
            user_id = self.aliases.get((params["organization_id"], params["alias"]))
            data = [{"user_id": user_id}] if user_id else []
        else:
            data = []
        return httpx.Response(200, json={"data": data, "meta": {}})


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def event_store() -> FakeEventStore:
    return FakeEventStore()


@pytest_asyncio.fixture
async def store_client(event_store: FakeEventStore) -> AsyncIterator[EventStoreClient]:
    client = EventStoreClient(
        base_url="https://store.test",
        token="store-token",
        transport=httpx.MockTransport(event_store.handler),
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@dataclass
class Tenant:
    organization_id: str
    project_id: str
    api_key: str
    api_key_id: str
    session_token: str
    user_id: str


@pytest_asyncio.fixture
async def tenant(session_factory: async_sessionmaker[AsyncSession]) -> Tenant:
    """One organization with a project, an API key and an admin session."""
    async with session_factory() as session:
        organization = OrganizationTable(id="org_1", name="Acme", retention_tier="premium")
        project = ProjectTable(id="proj_1", organization_id="org_1", name="Web")
        session.add_all([organization, project])
        await session.flush()
        api_key = await ApiKeyRepository(session).create("org_1", "proj_1", "bk_live_secret_1")
        session.add(
            SessionTable(
                token_hash=hash_token("session-token-1"),
                user_id="user_1",
                active_organization_id="org_1",
                role="admin",
                expires_at=datetime.now(UTC) + timedelta(days=1),
            )
        )
        await session.commit()
        api_key_id = api_key.id

    return Tenant(
        organization_id="org_1",
        project_id="proj_1",
        api_key="bk_live_secret_1",
        api_key_id=api_key_id,
        session_token="session-token-1",
        user_id="user_1",
    )
