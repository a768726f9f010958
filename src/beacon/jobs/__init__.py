"""Background job processing for Beacon.

Redis list queue and worker loop. The handlers live in
``beacon.jobs.tasks`` and are registered by the ``beacon worker`` command.

Example:
    queue = JobQueue(redis)
    await queue.submit("cleanup_deleted_projects", {"dry_run": True})

    worker = JobWorker(queue)
    register_all_handlers(worker, deps)
    await worker.run()
"""

from beacon.jobs.queue import Job, JobQueue, JobStatus
from beacon.jobs.worker import JobHandler, JobWorker, WorkerConfig

__all__ = [
    "Job",
    "JobQueue",
    "JobStatus",
    "JobWorker",
    "JobHandler",
    "WorkerConfig",
]
