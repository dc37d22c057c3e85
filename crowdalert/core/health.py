"""
Health check aggregation — probe the pipeline's collaborators.

Checks:
    • Redis (only when REDIS_ENABLED)
    • User directory database connectivity
    • External service configuration (geocoding, analysis, messaging)

External services are checked for configuration only; probing them live
would spend API quota on every readiness poll.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from crowdalert.core.cache import ping_redis
from crowdalert.core.config import settings
from crowdalert.core.database import get_engine

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def check_redis() -> ComponentHealth:
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if not settings.REDIS_ENABLED:
        comp.message = "Disabled — in-process geocode cache only"
    elif await ping_redis():
        comp.message = "Cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Redis unreachable — in-process geocode cache only"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_database() -> ComponentHealth:
    comp = ComponentHealth(name="user_directory")
    start = time.monotonic()
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection pool available"
    except (SQLAlchemyError, OSError) as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.details = {"url": settings.DATABASE_URL.split("@")[-1]}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_external_services() -> ComponentHealth:
    comp = ComponentHealth(name="external_services")
    start = time.monotonic()

    configured = {
        "geocoding": bool(settings.GOOGLE_MAPS_API_KEY),
        "analysis": bool(settings.GEMINI_API_KEY),
        "messaging": settings.SMS_PROVIDER == "simulation" or bool(
            settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN
            and settings.TWILIO_PHONE_NUMBER
        ),
    }
    missing = [name for name, ok in configured.items() if not ok]
    if missing:
        # Missing analysis key means every report fails closed
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Not configured: {', '.join(missing)}"
    else:
        comp.message = "External services configured"
    comp.details = {"sms_provider": settings.SMS_PROVIDER, **configured}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


DEFAULT_CHECKS: List[Callable[[], Awaitable[ComponentHealth]]] = [
    check_redis,
    check_database,
    check_external_services,
]


async def run_health_check(
    checks: Optional[List[Callable[[], Awaitable[ComponentHealth]]]] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for check in checks if checks is not None else DEFAULT_CHECKS:
        report.components.append(await check())

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
