"""Process-wide service graph.

Built once in the application lifespan and stored on ``app.state.services``.
Routers reach it through ``beacon.api.deps.get_services``; tests build one
around fakes and assign it directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beacon.api.rate_limit import SlidingWindowRateLimiter
from beacon.cache.idempotency import IdempotencyStore
from beacon.cache.invalidation import CacheInvalidator, EventBroadcaster
from beacon.cache.redis import QueryCache
from beacon.channels.directory import ChannelDirectory
from beacon.config import settings
from beacon.core.tasks import TaskSet
from beacon.events.fanout import FanOutDispatcher
from beacon.events.identity import IdentityService
from beacon.events.ingestion import EventIngestionService
from beacon.events.repository import EventRepository
from beacon.events.store import EventStoreClient
from beacon.jobs.queue import JobQueue
from beacon.notifications.push import PushNotificationService

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass
class Services:
    redis: Redis
    session_factory: async_sessionmaker[AsyncSession]
    store: EventStoreClient
    cache: QueryCache
    events: EventRepository
    channels: ChannelDirectory
    identity: IdentityService
    jobs: JobQueue
    fanout: FanOutDispatcher
    ingestion: EventIngestionService
    push: PushNotificationService
    rate_limiter: SlidingWindowRateLimiter

    async def aclose(self) -> None:
        """Let in-flight background work finish, then release the store client."""
        await self.fanout.drain()
        await self.cache.drain()
        await self.store.aclose()


def build_services(
    redis: Redis,
    session_factory: async_sessionmaker[AsyncSession],
    store: EventStoreClient | None = None,
) -> Services:
    """Wire the services around one Redis client and one session factory."""
    store = store or EventStoreClient()
    cache = QueryCache(redis, TaskSet("query-cache"))
    events = EventRepository(store, cache)
    channels = ChannelDirectory(session_factory)
    identity = IdentityService(store)
    jobs = JobQueue(redis)
    fanout = FanOutDispatcher(
        CacheInvalidator(cache), EventBroadcaster(redis), jobs, TaskSet("fanout")
    )
    ingestion = EventIngestionService(
        directory=channels,
        repository=events,
        idempotency=IdempotencyStore(redis),
        fanout=fanout,
        identity=identity,
    )
    logger.debug("Services built", extra={"instance_id": settings.instance_id})
    return Services(
        redis=redis,
        session_factory=session_factory,
        store=store,
        cache=cache,
        events=events,
        channels=channels,
        identity=identity,
        jobs=jobs,
        fanout=fanout,
        ingestion=ingestion,
        push=PushNotificationService(session_factory),
        rate_limiter=SlidingWindowRateLimiter(
            redis, settings.rate_limit_requests, settings.rate_limit_window
        ),
    )
