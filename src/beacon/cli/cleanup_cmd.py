"""CLI command for the deleted-project retention sweep.

Usage:
    beacon cleanup              # queue the job for a worker
    beacon cleanup --now        # run it in this process
    beacon cleanup --dry-run --now
"""

from __future__ import annotations

import asyncio
import json
from uuid import uuid4

import typer

from beacon.cli.runtime import open_runtime
from beacon.jobs.queue import Job
from beacon.jobs.tasks import CLEANUP_DELETED_PROJECTS_TASK, handle_cleanup_deleted_projects

app = typer.Typer(help="Purge projects past their retention period")


async def _cleanup(dry_run: bool, now: bool) -> None:
    payload = {"dry_run": dry_run}
    async with open_runtime() as runtime:
        if not now:
            job_id = await runtime.queue.submit(CLEANUP_DELETED_PROJECTS_TASK, payload)
            typer.echo(f"Queued {CLEANUP_DELETED_PROJECTS_TASK}: {job_id}")
            return

        job = Job(id=f"cli-{uuid4()}", task=CLEANUP_DELETED_PROJECTS_TASK, payload=payload)
        result = await handle_cleanup_deleted_projects(job, runtime.deps)
        typer.echo(json.dumps(result, indent=2))


@app.callback(invoke_without_command=True)
def cleanup(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Report eligible projects without deleting"
    ),
    now: bool = typer.Option(False, "--now", help="Run inline instead of queueing"),
) -> None:
    """Hard-delete projects soft-deleted longer than their retention tier allows."""
    asyncio.run(_cleanup(dry_run, now))
