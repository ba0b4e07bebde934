"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Document store connectivity (PostgreSQL or in-memory)
    • Scheduler state and registered jobs
    • Outcome of the most recent poll run
    • Upstream endpoints (GDACS feed, Expo push gateway)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from backend.app.core.config import settings
from backend.app.core.errors import StoreError
from backend.app.jobs.background_jobs import JobStatus, JobType

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


# Track application start time
_start_time = time.monotonic()


async def check_store(store) -> ComponentHealth:
    """Round-trip the document store."""
    comp = ComponentHealth(name="document_store")
    start = time.monotonic()
    comp.details = {"backend": settings.STORE_BACKEND}
    if store is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Store not initialised"
        return comp
    try:
        if await store.ping():
            comp.message = "Store reachable"
        else:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = "Store ping failed"
    except StoreError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_scheduler(scheduler) -> ComponentHealth:
    """Report whether the cron scheduler is running."""
    comp = ComponentHealth(name="scheduler")
    if not settings.SCHEDULER_ENABLED:
        comp.message = "Scheduler disabled by configuration"
        return comp
    if scheduler is None or not scheduler.running:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Scheduler not running"
        return comp

    comp.message = "Scheduler running"
    comp.details = {
        job.id: job.next_run_time.isoformat() if job.next_run_time else None
        for job in scheduler.get_jobs()
    }
    return comp


async def check_last_poll(tracker) -> ComponentHealth:
    """Degraded when the most recent poll run failed."""
    comp = ComponentHealth(name="alert_poller")
    run = tracker.last_run(JobType.POLL_ALERTS) if tracker else None
    if run is None:
        comp.message = "No poll run yet"
        return comp

    comp.details = {"run_id": run.run_id, "started_at": run.started_at.isoformat()}
    if run.status == JobStatus.FAILED:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Last poll failed: {run.error}"
    else:
        comp.message = f"Last poll {run.status.value}"
    return comp


async def check_external_apis() -> ComponentHealth:
    """Report the configured upstream endpoints (no network call)."""
    comp = ComponentHealth(name="external_apis")
    comp.message = "External APIs configured"
    comp.details = {
        "gdacs_feed": settings.GDACS_FEED_URL,
        "expo_push": settings.EXPO_PUSH_URL,
    }
    return comp


async def run_health_check(
    store=None,
    scheduler=None,
    tracker=None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_store(store),
        check_scheduler(scheduler),
        check_last_poll(tracker),
        check_external_apis(),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
