"""Structured logging for Beacon.

Two formatters are installed by :func:`configure_logging`:

- ``JsonFormatter`` writes one JSON object per line for log aggregation.
- ``ConsoleFormatter`` writes a short, coloured line for local development.

Request-scoped values are never read from ambient state. Callers pass them
with each record, usually from a ``RequestContext``:

    logger.info("Event created", extra=ctx.log_extra(event_id=event.id))
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from typing import Any

import orjson

# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

# Console label for each tenant field a RequestContext can carry
CONTEXT_LABELS = (
    ("request_id", "req"),
    ("organization_id", "org"),
    ("project_id", "proj"),
    ("user_id", "user"),
)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Example line::

        {"timestamp": "2026-01-10T12:34:56.789Z", "level": "INFO",
         "logger": "beacon.events.ingestion", "message": "Event created",
         "module": "ingestion", "function": "ingest", "line": 42,
         "request_id": "abc-123", "organization_id": "org_1", "event_id": "..."}

    Values orjson cannot encode are written with ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(_extra_fields(record))

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        return orjson.dumps(entry, default=str, option=orjson.OPT_NON_STR_KEYS).decode()


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for development.

    ``12:34:56 INFO     beacon.events.ingestion  Event created  req=abc12345 org=org_1``
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def _context(self, record: logging.LogRecord) -> str:
        parts = []
        for field, label in CONTEXT_LABELS:
            value = getattr(record, field, None)
            if not value:
                continue
            # Request ids are uuids; the first block is enough to grep for
            shown = str(value)[:8] if field == "request_id" else value
            parts.append(f"{label}={shown}")
        return " ".join(parts)

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{clock} {level} {record.name}  {record.getMessage()}"

        context = self._context(record)
        if context:
            line = f"{line}  {context}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        json_format: JSON lines (production) instead of console lines
        level: Root log level name
        use_colors: ANSI colours in console lines, when stderr is a terminal
    """
    formatter: logging.Formatter = (
        JsonFormatter() if json_format else ConsoleFormatter(use_colors=use_colors)
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
