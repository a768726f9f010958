"""Background worker that drains the job queue.

Example:
    worker = JobWorker(JobQueue(redis))
    register_all_handlers(worker, deps)
    await worker.run()  # until SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from beacon.core.tasks import TaskSet
from beacon.jobs.queue import Job, JobQueue

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[dict[str, Any] | None]]


@dataclass
class WorkerConfig:
    name: str = "default"
    batch_size: int = 1
    poll_interval: float = 1.0
    claim_timeout: int = 5


class JobWorker:
    """Claims jobs and runs the handler registered for each task name.

    A handler's exception fails the job, and the queue decides whether it
    is retried or dead-lettered. Jobs for unknown tasks are dead-lettered
    immediately.
    """

    def __init__(self, queue: JobQueue, config: WorkerConfig | None = None) -> None:
        self.queue = queue
        self.config = config or WorkerConfig()
        self._handlers: dict[str, JobHandler] = {}
        self._running = False
        self._in_flight = TaskSet(f"worker-{self.config.name}")

    @property
    def handlers(self) -> dict[str, JobHandler]:
        return dict(self._handlers)

    def register_handler(self, task: str, handler: JobHandler) -> None:
        self._handlers[task] = handler
        logger.debug("Registered job handler", extra={"task": task})

    async def start(self) -> None:
        self._running = True
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except (NotImplementedError, RuntimeError):
                # Not on the main thread, or unsupported platform
                pass
        logger.info("Worker started", extra={"worker": self.config.name})

    async def stop(self) -> None:
        """Stop claiming and wait for in-flight jobs."""
        if not self._running and not len(self._in_flight):
            return
        logger.info(
            "Stopping worker", extra={"worker": self.config.name, "in_flight": len(self._in_flight)}
        )
        self._running = False
        await self._in_flight.drain()
        logger.info("Worker stopped", extra={"worker": self.config.name})

    def _signal_handler(self) -> None:
        logger.info("Shutdown signal received, finishing in-flight jobs")
        self._running = False

    async def run(self) -> None:
        await self.start()
        try:
            while self._running:
                try:
                    async for job in self.queue.claim_jobs(
                        batch_size=self.config.batch_size,
                        timeout=self.config.claim_timeout,
                    ):
                        self._in_flight.spawn(self.process_job(job), name=f"job-{job.id}")
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("Claiming jobs failed", extra={"error": str(e)})
                await asyncio.sleep(self.config.poll_interval)
        finally:
            await self.stop()

    async def process_job(self, job: Job) -> None:
        handler = self._handlers.get(job.task)
        if handler is None:
            logger.error("No handler for task", extra={"job_id": job.id, "task": job.task})
            await self.queue.fail_job(job.id, f"Unknown task type: {job.task}", retry=False)
            return

        try:
            logger.info(
                "Processing job",
                extra={"job_id": job.id, "task": job.task, "attempts": job.attempts},
            )
            result = await handler(job)
        except Exception as e:
            logger.error(
                "Job failed", extra={"job_id": job.id, "task": job.task}, exc_info=True
            )
            await self.queue.fail_job(job.id, str(e), retry=True)
            return
        await self.queue.complete_job(job.id, result)

    async def run_once(self, timeout: int = 1) -> int:
        """Process one batch inline and return how many jobs ran."""
        count = 0
        async for job in self.queue.claim_jobs(batch_size=self.config.batch_size, timeout=timeout):
            await self.process_job(job)
            count += 1
        return count

    async def __aenter__(self) -> JobWorker:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
