"""
test_jobs_api.py — Tests for job tracking, scheduling and the HTTP API.

Covers:
    • JobTracker (success, failure containment, history bound, filters)
    • Scheduler construction (cron triggers, single instance)
    • Jobs API (manual triggers, run listing, 404s)
    • Users API (location change hook, notifications inbox)
    • Health endpoints

Run with:
    pytest tests/test_jobs_api.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.alert_service import AlertService
from backend.app.alerts.normalizer import build_alert_record
from backend.app.core.config import settings
from backend.app.core.errors import FeedFetchError
from backend.app.jobs.background_jobs import (
    JobStatus,
    JobTracker,
    JobType,
    build_scheduler,
)
from backend.app.main import app
from backend.app.store import (
    CHECKLISTS,
    DISASTERS,
    USERS,
    checklist_progress_path,
    notifications_path,
)


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

FEED_URL = "https://feed.test/events"
PUSH_URL = "https://push.test/send"


def _make_feature(eventid: int = 100, countries: tuple = ("PH",)) -> Dict[str, Any]:
    today = datetime.now(timezone.utc)
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [121.0, 14.6]},
        "bbox": [120.5, 14.1, 121.5, 15.1],
        "properties": {
            "eventid": eventid,
            "episodeid": 1,
            "eventtype": "FL",
            "name": "Flood",
            "description": "Flood",
            "htmldescription": "Red flood alert",
            "alertlevel": "Red",
            "alertscore": 3,
            "fromdate": (today - timedelta(days=1)).isoformat(),
            "todate": (today + timedelta(days=1)).isoformat(),
            "affectedcountries": [{"iso2": c, "countryname": c} for c in countries],
            "severitydata": {"severity": 1, "severitytext": "Severe", "severityunit": ""},
        },
    }


class _Upstream:
    def __init__(self, features: List[Dict[str, Any]], feed_status: int = 200):
        self.features = features
        self.feed_status = feed_status
        self.pushes: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "feed.test":
            if self.feed_status != 200:
                return httpx.Response(self.feed_status)
            return httpx.Response(200, json={"features": self.features})
        self.pushes.append(request)
        return httpx.Response(200, json={"data": []})


@pytest.fixture
def upstream() -> _Upstream:
    return _Upstream([_make_feature()])


@pytest.fixture
def client(monkeypatch, upstream):
    """App with scheduler off and upstream HTTP faked."""
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)
    with TestClient(app) as test_client:
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
        app.state.alert_service = AlertService(
            app.state.store, http, feed_url=FEED_URL, push_url=PUSH_URL,
        )
        yield test_client


def _seed(coro) -> Any:
    return asyncio.run(coro)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Job Tracker Tests
# ═══════════════════════════════════════════════════════════════════════════

class _Result:
    def to_dict(self):
        return {"ok": True}


class TestJobTracker:

    def test_successful_run(self):
        tracker = JobTracker()

        async def job():
            return _Result()

        run = asyncio.run(tracker.run(JobType.POLL_ALERTS, job))
        assert run.status == JobStatus.COMPLETED
        assert run.result == {"ok": True}
        assert run.completed_at is not None
        assert tracker.get(run.run_id) is run

    def test_failure_is_recorded_not_raised(self):
        tracker = JobTracker()

        async def job():
            raise FeedFetchError("GDACS", "HTTP 503")

        run = asyncio.run(tracker.run(JobType.POLL_ALERTS, job))
        assert run.status == JobStatus.FAILED
        assert "HTTP 503" in run.error

    def test_history_is_bounded(self):
        tracker = JobTracker(max_history=3)

        async def job():
            return {}

        runs = [asyncio.run(tracker.run(JobType.POLL_ALERTS, job)) for _ in range(5)]
        assert len(tracker.list_runs()) == 3
        assert tracker.get(runs[0].run_id) is None
        assert tracker.get(runs[-1].run_id) is not None

    def test_filters_and_last_run(self):
        tracker = JobTracker()

        async def ok():
            return {}

        async def bad():
            raise RuntimeError("boom")

        asyncio.run(tracker.run(JobType.POLL_ALERTS, ok))
        asyncio.run(tracker.run(JobType.RESET_CHECKLISTS, bad))

        assert len(tracker.list_runs(JobType.POLL_ALERTS)) == 1
        assert len(tracker.list_runs(status=JobStatus.FAILED)) == 1
        assert tracker.last_run(JobType.RESET_CHECKLISTS).status == JobStatus.FAILED

    def test_submit_runs_in_background(self):
        tracker = JobTracker()

        async def job():
            await asyncio.sleep(0)
            return {"done": 1}

        async def go():
            run = tracker.submit(JobType.RESET_CHECKLISTS, job)
            assert run.status == JobStatus.RUNNING
            assert run.trigger == "manual"
            await asyncio.sleep(0.01)
            return run

        run = asyncio.run(go())
        assert run.status == JobStatus.COMPLETED
        assert run.result == {"done": 1}

    def test_to_dict(self):
        tracker = JobTracker()

        async def job():
            return None

        d = asyncio.run(tracker.run(JobType.POLL_ALERTS, job)).to_dict()
        assert d["job_type"] == "poll_alerts"
        assert d["status"] == "completed"
        assert d["trigger"] == "schedule"


class TestBuildScheduler:

    def test_jobs_registered_single_instance(self):
        async def job():
            return None

        scheduler = build_scheduler(
            JobTracker(),
            {JobType.POLL_ALERTS: job, JobType.RESET_CHECKLISTS: job},
            crons={JobType.POLL_ALERTS: "0 * * * *", JobType.RESET_CHECKLISTS: "0 0 1 * *"},
            timezone_name="UTC",
        )
        jobs = {j.id: j for j in scheduler.get_jobs()}
        assert set(jobs) == {"poll_alerts", "reset_checklists"}
        assert all(j.max_instances == 1 for j in jobs.values())
        assert all(j.coalesce for j in jobs.values())

    def test_invalid_cron_rejected(self):
        async def job():
            return None

        with pytest.raises(ValueError):
            build_scheduler(
                JobTracker(),
                {JobType.POLL_ALERTS: job},
                crons={JobType.POLL_ALERTS: "every minute"},
            )


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Jobs API Tests
# ═══════════════════════════════════════════════════════════════════════════

class TestJobsApi:

    def test_poll_alerts(self, client, upstream):
        _seed(app.state.store.set(USERS, "u1", {
            "location": {"countryCode": "PH"}, "expoPushToken": "ExponentPushToken[u1]",
        }))

        resp = client.post("/api/v1/jobs/poll-alerts")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "completed"
        assert body["trigger"] == "manual"
        assert body["result"]["new_alerts"] == 1
        assert body["result"]["notifications_created"] == 1
        assert len(upstream.pushes) == 1
        assert resp.headers["X-Request-ID"]

    def test_poll_twice_is_idempotent(self, client):
        client.post("/api/v1/jobs/poll-alerts")
        body = client.post("/api/v1/jobs/poll-alerts").json()
        assert body["result"]["new_alerts"] == 0
        assert body["result"]["skipped_alerts"] == 1

    def test_feed_failure_reported_as_failed_run(self, client, upstream):
        upstream.feed_status = 503
        body = client.post("/api/v1/jobs/poll-alerts").json()
        assert body["status"] == "failed"
        assert "HTTP 503" in body["error"]

    def test_background_trigger(self, client):
        resp = client.post("/api/v1/jobs/poll-alerts", params={"wait": "false"})
        assert resp.status_code == 202
        assert resp.json()["run_id"]

    def test_reset_checklists(self, client):
        store = app.state.store
        _seed(store.set(CHECKLISTS, "kit", {"type": "recurring", "frequency": "monthly", "items": ["a", "b"]}))
        _seed(store.set(USERS, "u1", {"location": {"countryCode": "PH"}}))
        _seed(store.set(checklist_progress_path("u1"), "kit", {
            "checklistId": "kit", "checkedItems": [True, True], "completedPeriods": [],
        }))

        body = client.post("/api/v1/jobs/reset-checklists").json()

        assert body["status"] == "completed"
        assert body["result"]["records_reset"] == 1
        doc = _seed(store.get(checklist_progress_path("u1"), "kit"))
        assert doc["checkedItems"] == [False, False]

    def test_reset_rejects_unknown_frequency(self, client):
        resp = client.post("/api/v1/jobs/reset-checklists", params={"frequency": "daily"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_list_and_get_runs(self, client):
        run_id = client.post("/api/v1/jobs/poll-alerts").json()["run_id"]

        listing = client.get("/api/v1/jobs", params={"job_type": "poll_alerts"}).json()
        assert listing["count"] >= 1
        assert listing["runs"][0]["run_id"] == run_id

        assert client.get(f"/api/v1/jobs/{run_id}").json()["run_id"] == run_id

    def test_unknown_run_404(self, client):
        resp = client.get("/api/v1/jobs/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Users API Tests
# ═══════════════════════════════════════════════════════════════════════════

class TestUsersApi:

    def _seed_user_and_alert(self, country: str = "PH"):
        store = app.state.store
        _seed(store.set(USERS, "u1", {
            "location": {"countryCode": country}, "expoPushToken": "ExponentPushToken[u1]",
        }))
        alert = build_alert_record(_make_feature(eventid=700, countries=("JP",)))
        _seed(store.set(DISASTERS, alert.doc_id, alert.to_dict()))

    def test_country_change_triggers_catch_up(self, client, upstream):
        self._seed_user_and_alert("PH")

        resp = client.put("/api/v1/users/u1/location", json={"country_code": "jp"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["previous_country_code"] == "PH"
        assert body["country_code"] == "JP"
        assert body["country_changed"] is True
        assert body["catch_up"]["notifications_created"] == 1
        assert len(upstream.pushes) == 1

        stored = _seed(app.state.store.get(USERS, "u1"))
        assert stored["location"]["countryCode"] == "JP"
        assert stored["expoPushToken"] == "ExponentPushToken[u1]"

    def test_same_country_does_not_trigger(self, client, upstream):
        self._seed_user_and_alert("JP")
        body = client.put("/api/v1/users/u1/location", json={"country_code": "JP"}).json()
        assert body["country_changed"] is False
        assert body["catch_up"] is None
        assert upstream.pushes == []

    def test_unknown_user_404(self, client):
        resp = client.put("/api/v1/users/ghost/location", json={"country_code": "JP"})
        assert resp.status_code == 404

    def test_invalid_country_code(self, client):
        self._seed_user_and_alert()
        resp = client.put("/api/v1/users/u1/location", json={"country_code": "J1"})
        assert resp.status_code == 422

    def test_notifications_newest_first(self, client):
        store = app.state.store
        _seed(store.set(USERS, "u1", {"location": {"countryCode": "PH"}}))
        base = datetime(2025, 8, 20, tzinfo=timezone.utc)
        for i, key in enumerate(("1-1-u1", "2-1-u1", "3-1-u1")):
            _seed(store.set(notifications_path("u1"), key, {
                "title": f"Alert {i}", "description": "", "isRead": False,
                "timestamp": base + timedelta(hours=i), "data": {"eventid": i},
            }))

        body = client.get("/api/v1/users/u1/notifications").json()

        assert body["count"] == 3
        assert [n["id"] for n in body["notifications"]] == ["3-1-u1", "2-1-u1", "1-1-u1"]

    def test_notifications_limit(self, client):
        store = app.state.store
        _seed(store.set(USERS, "u1", {}))
        for i in range(5):
            _seed(store.set(notifications_path("u1"), f"{i}-1-u1", {"title": "t"}))
        body = client.get("/api/v1/users/u1/notifications", params={"limit": 2}).json()
        assert body["count"] == 2


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Health Tests
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()
        names = {c["name"] for c in body["components"]}
        assert {"document_store", "scheduler", "alert_poller", "external_apis"} <= names
        assert body["status"] == "healthy"

    def test_degraded_after_failed_poll(self, client, upstream):
        upstream.feed_status = 500
        client.post("/api/v1/jobs/poll-alerts")
        assert client.get("/health").json()["status"] == "degraded"

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client):
        assert client.get("/health/ready").status_code == 200
