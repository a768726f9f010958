"""Connections and handler dependencies for CLI commands that run outside the API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from beacon.cache.redis import QueryCache, close_redis, get_redis
from beacon.config import settings
from beacon.events.repository import EventRepository
from beacon.events.store import EventStoreClient
from beacon.jobs.queue import JobQueue
from beacon.jobs.tasks import TaskDependencies
from beacon.notifications.push import PushNotificationService
from beacon.observability import configure_logging
from beacon.persistence.db import close_db, get_session_factory, init_db


@dataclass
class Runtime:
    queue: JobQueue
    deps: TaskDependencies


@asynccontextmanager
async def open_runtime() -> AsyncIterator[Runtime]:
    """Open Redis, the database and the outbound HTTP clients; close them on exit."""
    configure_logging(json_format=settings.env != "dev", level=settings.log_level)
    await init_db()
    redis = await get_redis()
    session_factory = get_session_factory()
    store = EventStoreClient()
    cache = QueryCache(redis)

    async with httpx.AsyncClient(timeout=settings.webhook_timeout) as http:
        deps = TaskDependencies(
            session_factory=session_factory,
            events=EventRepository(store, cache),
            push=PushNotificationService(session_factory),
            http=http,
        )
        try:
            yield Runtime(queue=JobQueue(redis), deps=deps)
        finally:
            await cache.drain()
            await store.aclose()
            await close_redis()
            await close_db()
