"""
Background jobs for the alert backend.

═══════════════════════════════════════════════════════════════════════════
JOBS
═══════════════════════════════════════════════════════════════════════════

1. POLL ALERTS                                   cron POLL_ALERTS_CRON
   - Fetch the GDACS feed, store new alerts, notify affected users
   - Every minute by default; each run is idempotent

2. RESET CHECKLISTS                              cron RESET_CHECKLISTS_CRON
   - Clear recurring monthly checklists not completed this month
   - 00:00 UTC on the 1st of the month

Both can also be triggered by hand through the jobs API.

═══════════════════════════════════════════════════════════════════════════
EXECUTION MODEL
═══════════════════════════════════════════════════════════════════════════

APScheduler's AsyncIOScheduler runs in the same event loop as FastAPI.
Each job is registered with ``max_instances=1`` and ``coalesce=True``:
a run that overlaps the next tick makes the scheduler drop the tick
rather than start a second poller, and missed ticks collapse into one.

Every run goes through ``JobTracker.run``, which:
    • records a JobRun (status, timings, result or error)
    • scopes the log context to ``job`` / ``run_id``
    • contains failures, so one bad run never stops the schedule
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.app.core.config import settings
from backend.app.core.logging_config import set_log_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Job Status Model
# ═══════════════════════════════════════════════════════════════════════════

class JobType(str, Enum):
    POLL_ALERTS = "poll_alerts"
    RESET_CHECKLISTS = "reset_checklists"


class JobStatus(str, Enum):
    """Status of a job run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobRun:
    """One execution of a job."""
    run_id: str
    job_type: JobType
    status: JobStatus
    trigger: str  # "schedule" | "manual"
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "job_type": self.job_type.value,
            "status": self.status.value,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "error": self.error,
            "result": self.result,
        }


JobFunc = Callable[[], Awaitable[Any]]


# ═══════════════════════════════════════════════════════════════════════════
# Job Tracker
# ═══════════════════════════════════════════════════════════════════════════

class JobTracker:
    """
    Runs jobs and keeps a bounded history of their runs.

    Usage:
        tracker = JobTracker()

        run = await tracker.run(JobType.POLL_ALERTS, service.poll_alerts)
        print(run.status, run.result)

        # Fire and forget, inspect later
        run = tracker.submit(JobType.RESET_CHECKLISTS, reset)
        tracker.get(run.run_id)
    """

    def __init__(self, max_history: Optional[int] = None):
        self._runs: "OrderedDict[str, JobRun]" = OrderedDict()
        self._max_history = max_history or settings.JOB_HISTORY_SIZE
        self._tasks: Dict[str, asyncio.Task] = {}

    def _generate_run_id(self) -> str:
        return uuid.uuid4().hex[:12]

    def _start(self, job_type: JobType, trigger: str) -> JobRun:
        run = JobRun(
            run_id=self._generate_run_id(),
            job_type=job_type,
            status=JobStatus.RUNNING,
            trigger=trigger,
            started_at=datetime.now(timezone.utc),
        )
        self._runs[run.run_id] = run
        while len(self._runs) > self._max_history:
            self._runs.popitem(last=False)
        return run

    def get(self, run_id: str) -> Optional[JobRun]:
        return self._runs.get(run_id)

    def list_runs(
        self,
        job_type: Optional[JobType] = None,
        status: Optional[JobStatus] = None,
    ) -> List[JobRun]:
        """Runs newest first, optionally filtered."""
        runs = list(self._runs.values())
        if job_type:
            runs = [r for r in runs if r.job_type == job_type]
        if status:
            runs = [r for r in runs if r.status == status]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

    def last_run(self, job_type: JobType) -> Optional[JobRun]:
        runs = self.list_runs(job_type)
        return runs[0] if runs else None

    async def _execute(self, run: JobRun, func: JobFunc) -> JobRun:
        set_log_context(job=run.job_type.value, run_id=run.run_id)
        logger.info("Job %s started (%s)", run.job_type.value, run.trigger,
                    extra={"job": run.job_type.value, "run_id": run.run_id})
        try:
            result = await func()
        except Exception as exc:
            run.status = JobStatus.FAILED
            run.error = str(exc)
            logger.exception("Job %s failed: %s", run.job_type.value, exc,
                             extra={"job": run.job_type.value, "run_id": run.run_id})
        else:
            run.status = JobStatus.COMPLETED
            run.result = result.to_dict() if hasattr(result, "to_dict") else result
        finally:
            run.completed_at = datetime.now(timezone.utc)
            duration_ms = run.elapsed_seconds * 1000
            logger.info("Job %s %s in %.0fms", run.job_type.value, run.status.value,
                        duration_ms,
                        extra={"job": run.job_type.value, "run_id": run.run_id,
                               "duration_ms": duration_ms})
            set_log_context()
            self._tasks.pop(run.run_id, None)
        return run

    async def run(
        self,
        job_type: JobType,
        func: JobFunc,
        *,
        trigger: str = "schedule",
    ) -> JobRun:
        """Run ``func`` to completion; failures are recorded, not raised."""
        return await self._execute(self._start(job_type, trigger), func)

    def submit(
        self,
        job_type: JobType,
        func: JobFunc,
        *,
        trigger: str = "manual",
    ) -> JobRun:
        """Start ``func`` in the background and return its run immediately."""
        run = self._start(job_type, trigger)
        self._tasks[run.run_id] = asyncio.create_task(self._execute(run, func))
        return run

    async def shutdown(self) -> None:
        """Cancel background runs still in flight."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════════════════════

def build_scheduler(
    tracker: JobTracker,
    jobs: Dict[JobType, JobFunc],
    *,
    crons: Optional[Dict[JobType, str]] = None,
    timezone_name: Optional[str] = None,
) -> AsyncIOScheduler:
    """
    Create (but do not start) the scheduler for ``jobs``.

    Parameters
    ----------
    tracker : JobTracker
        Every scheduled run is executed through ``tracker.run``.
    jobs : dict
        Job type → zero-argument coroutine function.
    crons : dict, optional
        Job type → crontab expression; defaults from settings.
    timezone_name : str, optional
        Defaults to ``SCHEDULER_TIMEZONE`` (UTC).
    """
    tz = timezone_name or settings.SCHEDULER_TIMEZONE
    crons = crons or {
        JobType.POLL_ALERTS: settings.POLL_ALERTS_CRON,
        JobType.RESET_CHECKLISTS: settings.RESET_CHECKLISTS_CRON,
    }

    scheduler = AsyncIOScheduler(timezone=tz)
    for job_type, func in jobs.items():
        scheduler.add_job(
            partial(tracker.run, job_type, func),
            CronTrigger.from_crontab(crons[job_type], timezone=tz),
            id=job_type.value,
            name=job_type.value,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Scheduled %s (%s %s)", job_type.value, crons[job_type], tz)
    return scheduler
