"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager
from functools import partial

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Domain services ──
from backend.app.alerts.alert_service import AlertService
from backend.app.checklists.reset_job import reset_recurring_checklists
from backend.app.jobs.background_jobs import JobTracker, JobType, build_scheduler
from backend.app.store import create_store

# ── API routers ──
from backend.app.api.v1.jobs import router as jobs_router
from backend.app.api.v1.users import router as users_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the store, HTTP client, services and scheduler; tear down in reverse."""
    logger.info(
        "Starting %s v%s [%s] store=%s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.STORE_BACKEND,
    )

    store = create_store(settings.STORE_BACKEND)
    await store.init()
    client = httpx.AsyncClient(headers={"User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}"})
    service = AlertService(store, client)
    tracker = JobTracker()

    app.state.store = store
    app.state.http_client = client
    app.state.alert_service = service
    app.state.job_tracker = tracker
    app.state.scheduler = None

    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler(
            tracker,
            {
                JobType.POLL_ALERTS: service.poll_alerts,
                JobType.RESET_CHECKLISTS: partial(reset_recurring_checklists, store),
            },
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))

    try:
        yield
    finally:
        logger.info("Shutting down %s", settings.APP_NAME)
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        await tracker.shutdown()
        await client.aclose()
        await store.close()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Serverless-style backend for a disaster-preparedness mobile app. "
        "Polls the GDACS global disaster feed, stores each new event "
        "episode once, notifies users in the affected countries through "
        "Expo push and per-user inbox records, catches users up on "
        "ongoing disasters when they move country, and resets recurring "
        "preparedness checklists every month."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(jobs_router)
app.include_router(users_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "alert-polling",
            "push-notifications",
            "location-catch-up",
            "checklist-reset",
        ],
        "docs": "/docs",
    }


async def _health(request: Request):
    return await run_health_check(
        store=getattr(request.app.state, "store", None),
        scheduler=getattr(request.app.state, "scheduler", None),
        tracker=getattr(request.app.state, "job_tracker", None),
    )


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Deep health probe — checks all subsystems."""
    report = await _health(request)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(request: Request):
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await _health(request)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
