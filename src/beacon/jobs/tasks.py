"""Job handlers run by the worker.

- ``event_notifications``: webhooks and push for one created event
- ``cleanup_deleted_projects``: retention sweep of soft-deleted projects

Handlers take the job and a ``TaskDependencies`` bundle;
``register_all_handlers`` binds the bundle and registers each handler under
its task name.

Example:
    worker = JobWorker(JobQueue(redis))
    register_all_handlers(worker, deps)
    await worker.run()
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beacon.config import settings
from beacon.events.fanout import EVENT_NOTIFICATIONS_TASK
from beacon.events.repository import EventRepository
from beacon.notifications.push import PushNotificationService, build_event_payload
from beacon.notifications.webhooks import dispatch_webhooks, load_targets
from beacon.persistence.repositories import ProjectRepository, WebhookRepository
from beacon.security.encryption import SecretCipher, get_cipher

if TYPE_CHECKING:
    from beacon.jobs.queue import Job
    from beacon.jobs.worker import JobWorker

logger = logging.getLogger(__name__)

CLEANUP_DELETED_PROJECTS_TASK = "cleanup_deleted_projects"

TaskHandler = Callable[["Job", "TaskDependencies"], Awaitable[dict[str, Any]]]


def _configured_cipher() -> SecretCipher | None:
    return get_cipher() if settings.encryption_key else None


@dataclass
class TaskDependencies:
    """Services the handlers need, built once per worker process."""

    session_factory: async_sessionmaker[AsyncSession]
    events: EventRepository
    push: PushNotificationService
    http: httpx.AsyncClient | None = None
    cipher: Callable[[], SecretCipher | None] = field(default=_configured_cipher)


def job_handler(task: str) -> Callable[[TaskHandler], TaskHandler]:
    """Mark a coroutine as the handler of ``task``."""

    def decorator(func: TaskHandler) -> TaskHandler:
        func.__job_task__ = task  # type: ignore[attr-defined]
        return func

    return decorator


@job_handler(EVENT_NOTIFICATIONS_TASK)
async def handle_event_notifications(job: Job, deps: TaskDependencies) -> dict[str, Any]:
    """Deliver webhooks and push notifications for one event.

    Payload:
        eventId, channelId, organizationId, projectId, notify, eventType, tags

    Store and database errors propagate so the queue retries the job.
    Individual webhook or push failures are part of the returned summary.
    """
    payload = job.payload
    event_id = payload["eventId"]
    channel_id = payload["channelId"]
    organization_id = payload["organizationId"]

    event = await deps.events.get_event_by_id(event_id, organization_id)
    if event is None:
        logger.warning(
            f"Event {event_id} not found, skipping notifications",
            extra={"job_id": job.id, "channel_id": channel_id},
        )
        return {"eventId": event_id, "skipped": "event not found"}

    async with deps.session_factory() as session:
        rows = await WebhookRepository(session).list_enabled_for_channel(
            channel_id, payload.get("eventType")
        )

    targets, undecryptable = load_targets(rows, deps.cipher())
    webhooks = await dispatch_webhooks(targets, event, client=deps.http)
    if undecryptable:
        webhooks["total"] += len(undecryptable)
        webhooks["failed"] += len(undecryptable)
        webhooks["failures"].extend(undecryptable)

    push: dict[str, Any] | None = None
    if payload.get("notify", True):
        push = await deps.push.send_to_channels(
            organization_id, [channel_id], build_event_payload(event)
        )

    return {"eventId": event_id, "webhooks": webhooks, "push": push}


@job_handler(CLEANUP_DELETED_PROJECTS_TASK)
async def handle_cleanup_deleted_projects(job: Job, deps: TaskDependencies) -> dict[str, Any]:
    """Hard-delete projects soft-deleted longer than their organization keeps them.

    Payload:
        dry_run: Only report what would be deleted (default: False)

    A project that fails to delete is logged and skipped.
    """
    dry_run = bool(job.payload.get("dry_run", False))

    async with deps.session_factory() as session:
        expired = await ProjectRepository(session).list_expired()

    result = {
        "projectsFound": len(expired),
        "projectsDeleted": 0,
        "channelsDeleted": 0,
        "apiKeysDeleted": 0,
        "dryRun": dry_run,
    }
    if dry_run or not expired:
        logger.info(f"Project cleanup: {len(expired)} eligible (dry_run={dry_run})")
        return result

    for project_id, tier in expired:
        try:
            async with deps.session_factory() as session:
                counts = await ProjectRepository(session).purge(project_id)
                await session.commit()
        except Exception as e:
            logger.error(
                f"Failed to delete project {project_id}: {e}",
                extra={"project_id": project_id, "retention_tier": tier},
            )
            continue
        result["projectsDeleted"] += 1
        result["channelsDeleted"] += counts["channels_deleted"]
        result["apiKeysDeleted"] += counts["api_keys_deleted"]
        logger.info(
            f"Project deleted permanently: {project_id}",
            extra={"project_id": project_id, "retention_tier": tier, **counts},
        )

    logger.info("Project cleanup completed", extra=result)
    return result


BUILTIN_HANDLERS: list[TaskHandler] = [
    handle_event_notifications,
    handle_cleanup_deleted_projects,
]


def register_all_handlers(worker: JobWorker, deps: TaskDependencies) -> None:
    for handler in BUILTIN_HANDLERS:
        task = handler.__job_task__  # type: ignore[attr-defined]
        worker.register_handler(task, functools.partial(handler, deps=deps))
