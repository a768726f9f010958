"""CLI commands for Beacon.

Provides command-line interface using Typer:
- beacon serve: Run the API server
- beacon worker: Run the background job worker
- beacon cleanup: Queue (or run) the deleted-project retention sweep

Usage:
    beacon --help
    beacon serve --port 8080
    beacon worker --batch-size 5
    beacon cleanup --dry-run --now
"""

import typer

from beacon.cli.cleanup_cmd import app as cleanup_app
from beacon.cli.serve import app as serve_app
from beacon.cli.worker_cmd import app as worker_app

app = typer.Typer(
    name="beacon",
    help="Beacon: event ingestion and notification service",
    no_args_is_help=True,
)

app.add_typer(serve_app, name="serve")
app.add_typer(worker_app, name="worker")
app.add_typer(cleanup_app, name="cleanup")


@app.callback()
def callback() -> None:
    """Beacon: event ingestion and notification service."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
