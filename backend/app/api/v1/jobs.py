"""
FastAPI route: scheduled jobs, on demand.

Provides endpoints to:
    POST /api/v1/jobs/poll-alerts        — run one alert poll cycle
    POST /api/v1/jobs/reset-checklists   — run the recurring checklist reset
    GET  /api/v1/jobs                    — recent runs, newest first
    GET  /api/v1/jobs/{run_id}           — one run

By default a trigger waits for the run to finish and returns it; with
``wait=false`` the run starts in the background (202) and can be polled.
"""

from __future__ import annotations

from functools import partial
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from backend.app.alerts.alert_service import AlertService
from backend.app.api.dependencies import get_alert_service, get_job_tracker, get_store
from backend.app.api.schemas import JobListResponse, JobRunResponse
from backend.app.checklists.models import Frequency
from backend.app.checklists.reset_job import reset_recurring_checklists
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.jobs.background_jobs import JobStatus, JobTracker, JobType
from backend.app.store import DocumentStore

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.post(
    "/poll-alerts",
    response_model=JobRunResponse,
    summary="Run one GDACS poll cycle",
)
async def trigger_poll_alerts(
    wait: bool = Query(True, description="Wait for the run to finish"),
    service: AlertService = Depends(get_alert_service),
    tracker: JobTracker = Depends(get_job_tracker),
):
    if not wait:
        run = tracker.submit(JobType.POLL_ALERTS, service.poll_alerts)
        return JSONResponse(status_code=202, content=run.to_dict())
    run = await tracker.run(JobType.POLL_ALERTS, service.poll_alerts, trigger="manual")
    return run.to_dict()


@router.post(
    "/reset-checklists",
    response_model=JobRunResponse,
    summary="Reset recurring checklists for the current period",
)
async def trigger_reset_checklists(
    frequency: str = Query(Frequency.MONTHLY.value, description="monthly | weekly"),
    wait: bool = Query(True, description="Wait for the run to finish"),
    store: DocumentStore = Depends(get_store),
    tracker: JobTracker = Depends(get_job_tracker),
):
    if frequency not in (Frequency.MONTHLY.value, Frequency.WEEKLY.value):
        raise ValidationError(
            f"Unsupported frequency '{frequency}'", field="frequency",
        )
    func = partial(reset_recurring_checklists, store, frequency=frequency)
    if not wait:
        run = tracker.submit(JobType.RESET_CHECKLISTS, func)
        return JSONResponse(status_code=202, content=run.to_dict())
    run = await tracker.run(JobType.RESET_CHECKLISTS, func, trigger="manual")
    return run.to_dict()


@router.get("", response_model=JobListResponse, summary="List recent job runs")
async def list_job_runs(
    job_type: Optional[JobType] = Query(None),
    status: Optional[JobStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    tracker: JobTracker = Depends(get_job_tracker),
):
    runs = tracker.list_runs(job_type, status)[:limit]
    return {"count": len(runs), "runs": [r.to_dict() for r in runs]}


@router.get("/{run_id}", response_model=JobRunResponse, summary="Get one job run")
async def get_job_run(
    run_id: str,
    tracker: JobTracker = Depends(get_job_tracker),
):
    run = tracker.get(run_id)
    if run is None:
        raise NotFoundError("JobRun", run_id=run_id)
    return run.to_dict()
