"""CLI command for running the background job worker.

Usage:
    beacon worker
    beacon worker --name notifications --batch-size 5
"""

from __future__ import annotations

import asyncio

import typer

from beacon.cli.runtime import open_runtime
from beacon.jobs.tasks import register_all_handlers
from beacon.jobs.worker import JobWorker, WorkerConfig

app = typer.Typer(help="Run the background job worker")


async def _run_worker(config: WorkerConfig) -> None:
    async with open_runtime() as runtime:
        worker = JobWorker(runtime.queue, config)
        register_all_handlers(worker, runtime.deps)
        await worker.run()


@app.callback(invoke_without_command=True)
def worker(
    name: str = typer.Option("default", "--name", "-n", help="Worker name used in logs"),
    batch_size: int = typer.Option(
        1, "--batch-size", "-b", help="Jobs claimed per poll", min=1
    ),
    poll_interval: float = typer.Option(
        1.0, "--poll-interval", help="Seconds to wait between polls"
    ),
) -> None:
    """Process queued jobs until SIGINT or SIGTERM."""
    typer.echo(f"Starting Beacon worker '{name}'...")
    config = WorkerConfig(name=name, batch_size=batch_size, poll_interval=poll_interval)
    asyncio.run(_run_worker(config))
