"""
Health check aggregation: probes the pieces the pipeline depends on.

Checks:
    • Cache store reachability (Redis ping, or in-process dict)
    • Request throttle backlog
    • Archive endpoint configuration

Returns a structured report suitable for liveness/readiness probes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from weather_compare.app.core.config import settings

if TYPE_CHECKING:
    from weather_compare.app.core.cache import TemporalCache
    from weather_compare.app.ingestion.throttle import RequestThrottle

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


def check_cache(cache: "TemporalCache") -> ComponentHealth:
    """Cache is an optimisation: an unreachable store degrades, never fails."""
    comp = ComponentHealth(name="cache")
    start = time.monotonic()
    store = cache.store
    try:
        ping = getattr(store, "ping", None)
        if ping is not None and not ping():
            raise ConnectionError("store did not answer ping")
        stats = cache.stats()
        comp.message = f"{type(store).__name__} reachable"
        comp.details = {"entries": stats.total_entries, "size": stats.total_size}
    except Exception as e:
        logger.warning("Cache health check failed: %s", e)
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{type(store).__name__}: {e}"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_throttle(throttle: "RequestThrottle") -> ComponentHealth:
    """More than a full window's quota queued means callers wait over a minute."""
    comp = ComponentHealth(name="request_throttle")
    start = time.monotonic()
    stats = throttle.stats()
    comp.details = stats.to_dict()
    if stats.queued > stats.quota:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{stats.queued} requests queued (quota {stats.quota}/window)"
    else:
        comp.message = f"{stats.state}, {stats.current_calls}/{stats.quota} calls this window"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_archive_config() -> ComponentHealth:
    comp = ComponentHealth(name="archive_api")
    comp.details = {
        "archive": settings.ARCHIVE_API_URL,
        "forecast": settings.FORECAST_API_URL,
        "timezone": settings.ARCHIVE_TIMEZONE,
    }
    if not settings.ARCHIVE_API_URL.startswith(("http://", "https://")):
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "ARCHIVE_API_URL is not an http(s) URL"
    else:
        comp.message = "Archive endpoint configured"
    return comp


async def run_health_check(
    cache: Optional["TemporalCache"] = None,
    throttle: Optional["RequestThrottle"] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    if cache is not None:
        report.components.append(check_cache(cache))
    if throttle is not None:
        report.components.append(check_throttle(throttle))
    report.components.append(check_archive_config())

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
