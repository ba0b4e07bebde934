"""
Request dependencies.

Long-lived objects are created once in the application lifespan and
hung off ``app.state``; routes receive them through ``Depends`` so tests
can swap in their own.
"""

from fastapi import Request

from backend.app.alerts.alert_service import AlertService
from backend.app.jobs.background_jobs import JobTracker
from backend.app.store import DocumentStore


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_alert_service(request: Request) -> AlertService:
    return request.app.state.alert_service


def get_job_tracker(request: Request) -> JobTracker:
    return request.app.state.job_tracker
