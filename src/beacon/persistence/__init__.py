"""Relational persistence for Beacon (SQLAlchemy asyncio)."""

from beacon.persistence.db import (
    close_db,
    get_engine,
    get_session_factory,
    health_check,
    init_db,
    session_context,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "session_context",
    "init_db",
    "close_db",
    "health_check",
]
