"""Health check endpoints for Beacon.

- /health/live  - Liveness probe (always OK while the process runs)
- /health/ready - Readiness probe (database and Redis connectivity)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi import APIRouter
from fastapi.responses import ORJSONResponse

from beacon.cache.redis import get_redis
from beacon.persistence.db import health_check as db_health_check

router = APIRouter(tags=["health"])

CHECK_TIMEOUT = 5.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    latency_ms: float
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            result["message"] = self.message
        return result


# Cache readiness briefly to prevent health check storms
_health_cache: tuple[float, dict[str, Any]] | None = None
HEALTH_CACHE_TTL = 5  # seconds


async def _ping_redis() -> bool:
    client = await get_redis()
    return bool(await client.ping())


async def _check(name: str, probe: Callable[[], Awaitable[bool]]) -> ComponentHealth:
    start = time.monotonic()
    try:
        healthy = await asyncio.wait_for(probe(), timeout=CHECK_TIMEOUT)
        message = None if healthy else f"{name} check failed"
    except asyncio.TimeoutError:
        healthy, message = False, f"{name} check timed out"
    except Exception as e:
        healthy, message = False, str(e)
    return ComponentHealth(
        name=name,
        status=HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
        latency_ms=(time.monotonic() - start) * 1000,
        message=message,
    )


async def check_database() -> ComponentHealth:
    return await _check("database", db_health_check)


async def check_redis() -> ComponentHealth:
    return await _check("redis", _ping_redis)


@router.get("/health/live")
async def live() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@router.get("/health/ready")
async def ready() -> ORJSONResponse:
    """Readiness probe.

    Returns 200 when the database and Redis answer, 503 otherwise.
    """
    global _health_cache

    now = time.monotonic()
    if _health_cache is not None:
        cached_time, cached_result = _health_cache
        if now - cached_time < HEALTH_CACHE_TTL:
            return ORJSONResponse(
                content=cached_result,
                status_code=200 if cached_result["status"] == "healthy" else 503,
            )

    components = list(await asyncio.gather(check_database(), check_redis()))
    healthy = all(c.status == HealthStatus.HEALTHY for c in components)
    overall = HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY

    result = {
        "status": overall.value,
        "components": [c.to_dict() for c in components],
    }
    _health_cache = (now, result)
    return ORJSONResponse(content=result, status_code=200 if healthy else 503)
