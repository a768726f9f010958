"""Redis list job queue for the durable notification workflow.

Fan-out submits one job per created event; workers claim jobs atomically
with BRPOPLPUSH, and a failed job is re-queued until its retries run out,
after which it parks in the dead letter list.

Keys:
    beacon:job:{id}          job document (orjson)
    beacon:jobs:pending      ids waiting to be claimed
    beacon:jobs:processing   ids claimed by a worker
    beacon:jobs:dlq          ids that exhausted their retries

Example:
    queue = JobQueue(redis)
    job_id = await queue.submit("event_notifications", {"eventId": "evt_1"})

    async for job in queue.claim_jobs(timeout=5):
        await queue.complete_job(job.id, {"ok": True})
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar, cast
from uuid import uuid4

import orjson

from beacon.config import settings

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

JOB_PREFIX = "beacon:job:"
QUEUE_PENDING = "beacon:jobs:pending"
QUEUE_PROCESSING = "beacon:jobs:processing"
QUEUE_DLQ = "beacon:jobs:dlq"

DEFAULT_JOB_TTL = 86400 * 7
DEFAULT_RESULT_TTL = 86400


def _await_redis(result: Awaitable[T] | T) -> Awaitable[T]:
    """Cast redis-py async results to an awaitable for mypy."""
    return cast(Awaitable[T], result)


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEAD = "dead"


@dataclass
class Job:
    """A queued unit of background work."""

    id: str
    task: str
    payload: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int = 0
    max_retries: int = 3

    @property
    def retries_left(self) -> bool:
        return self.attempts < self.max_retries

    def to_bytes(self) -> bytes:
        return orjson.dumps(
            {
                "id": self.id,
                "task": self.task,
                "payload": self.payload,
                "status": self.status.value,
                "created_at": self.created_at.isoformat(),
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "completed_at": self.completed_at.isoformat() if self.completed_at else None,
                "result": self.result,
                "error": self.error,
                "attempts": self.attempts,
                "max_retries": self.max_retries,
            }
        )

    @classmethod
    def from_bytes(cls, raw: bytes | str) -> Job:
        data = orjson.loads(raw)
        started_at = data.get("started_at")
        completed_at = data.get("completed_at")
        return cls(
            id=data["id"],
            task=data["task"],
            payload=data.get("payload") or {},
            status=JobStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            started_at=datetime.fromisoformat(started_at) if started_at else None,
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            result=data.get("result"),
            error=data.get("error"),
            attempts=data.get("attempts", 0),
            max_retries=data.get("max_retries", 3),
        )


class JobQueue:
    """Redis-backed job queue shared by API processes and workers."""

    def __init__(
        self,
        client: Redis,
        job_ttl: int = DEFAULT_JOB_TTL,
        result_ttl: int = DEFAULT_RESULT_TTL,
        max_retries: int | None = None,
    ) -> None:
        self.client = client
        self.job_ttl = job_ttl
        self.result_ttl = result_ttl
        self.max_retries = max_retries if max_retries is not None else settings.job_max_retries

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"{JOB_PREFIX}{job_id}"

    async def _save(self, job: Job, ttl: int) -> None:
        await _await_redis(self.client.set(self._job_key(job.id), job.to_bytes(), ex=ttl))

    async def submit(
        self,
        task: str,
        payload: dict[str, Any] | None = None,
        max_retries: int | None = None,
    ) -> str:
        """Queue a job and return its id."""
        job = Job(
            id=str(uuid4()),
            task=task,
            payload=payload or {},
            max_retries=max_retries if max_retries is not None else self.max_retries,
        )
        await self._save(job, self.job_ttl)
        await _await_redis(self.client.lpush(QUEUE_PENDING, job.id))
        logger.info(f"Job submitted: {job.id} ({task})")
        return job.id

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self.client.get(self._job_key(job_id))
        return Job.from_bytes(raw) if raw is not None else None

    async def claim_jobs(self, batch_size: int = 1, timeout: int = 0) -> AsyncIterator[Job]:
        """Move up to ``batch_size`` jobs from pending to processing.

        Blocks up to ``timeout`` seconds for each job (0 blocks forever) and
        stops early when the wait times out.
        """
        for _ in range(batch_size):
            raw_id = await _await_redis(
                self.client.brpoplpush(QUEUE_PENDING, QUEUE_PROCESSING, timeout=timeout)
            )
            if raw_id is None:
                break

            job_id = _decode(raw_id)
            job = await self.get_job(job_id)
            if job is None:
                # Expired while queued
                await _await_redis(self.client.lrem(QUEUE_PROCESSING, 1, job_id))
                continue

            job.status = JobStatus.RUNNING
            job.started_at = datetime.now(UTC)
            job.attempts += 1
            await self._save(job, self.job_ttl)
            logger.info(f"Job claimed: {job.id} (attempt {job.attempts})")
            yield job

    async def complete_job(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        job = await self.get_job(job_id)
        if job is None:
            logger.warning(f"Job not found for completion: {job_id}")
            return

        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.now(UTC)
        job.result = result
        await self._save(job, self.result_ttl)
        await _await_redis(self.client.lrem(QUEUE_PROCESSING, 1, job_id))
        logger.info(f"Job completed: {job_id}")

    async def fail_job(self, job_id: str, error: str, retry: bool = True) -> JobStatus | None:
        """Record a failure; re-queue while retries remain, else dead-letter.

        Returns:
            The job's new status, or None when the job is gone
        """
        job = await self.get_job(job_id)
        if job is None:
            logger.warning(f"Job not found for failure: {job_id}")
            return None

        job.error = error
        await _await_redis(self.client.lrem(QUEUE_PROCESSING, 1, job_id))

        if retry and job.retries_left:
            job.status = JobStatus.PENDING
            await self._save(job, self.job_ttl)
            await _await_redis(self.client.lpush(QUEUE_PENDING, job_id))
            logger.info(
                f"Job queued for retry: {job_id} (attempt {job.attempts}/{job.max_retries})"
            )
        else:
            job.status = JobStatus.DEAD
            job.completed_at = datetime.now(UTC)
            await self._save(job, self.job_ttl)
            await _await_redis(self.client.lpush(QUEUE_DLQ, job_id))
            logger.warning(f"Job moved to DLQ: {job_id} ({error})")
        return job.status

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a job that has not finished."""
        job = await self.get_job(job_id)
        if job is None or job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
            return False

        await _await_redis(self.client.lrem(QUEUE_PENDING, 1, job_id))
        await _await_redis(self.client.lrem(QUEUE_PROCESSING, 1, job_id))
        job.status = JobStatus.CANCELLED
        job.completed_at = datetime.now(UTC)
        await self._save(job, self.result_ttl)
        logger.info(f"Job cancelled: {job_id}")
        return True

    async def list_jobs(self, status: JobStatus | None = None, limit: int = 100) -> list[Job]:
        if status == JobStatus.PENDING:
            queues = [QUEUE_PENDING]
        elif status == JobStatus.RUNNING:
            queues = [QUEUE_PROCESSING]
        elif status == JobStatus.DEAD:
            queues = [QUEUE_DLQ]
        else:
            queues = [QUEUE_PENDING, QUEUE_PROCESSING, QUEUE_DLQ]

        jobs: list[Job] = []
        for queue in queues:
            for raw_id in await _await_redis(self.client.lrange(queue, 0, limit - 1)):
                job = await self.get_job(_decode(raw_id))
                if job is not None and (status is None or job.status == status):
                    jobs.append(job)
        return jobs[:limit]

    async def get_queue_stats(self) -> dict[str, int]:
        return {
            "pending": await _await_redis(self.client.llen(QUEUE_PENDING)),
            "processing": await _await_redis(self.client.llen(QUEUE_PROCESSING)),
            "dlq": await _await_redis(self.client.llen(QUEUE_DLQ)),
        }
