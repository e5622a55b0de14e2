"""
Tests for the meeting and metrics HTTP routes.
"""

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from meeting_triage.errors import PermanentExecutionError
from meeting_triage.main import app
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.routes.meetings import get_settings_store
from meeting_triage.services.calendar.google_client import GoogleCalendarError
from meeting_triage.services.metrics.metrics_aggregator import MetricsAggregator, get_metrics_aggregator
from meeting_triage.services.qualification.controller import get_qualification_controller
from meeting_triage.services.scheduling.job_scheduler import get_job_scheduler


class FakeSettingsStore:
    blobs: dict = {}

    @classmethod
    async def get_automation_settings(cls, user_id):
        return AutomationSettings.from_blob(cls.blobs.get(user_id))

    @classmethod
    async def save_automation_settings(cls, user_id, automation):
        cls.blobs[user_id] = automation.to_blob()


@pytest.fixture
def client(controller, scheduler, meetings, metrics_store, clock):
    FakeSettingsStore.blobs = {"user-1": {"autoDeleteDisqualified": True, "cleanupDelayMinutes": 5}}
    aggregator = MetricsAggregator(meetings=meetings, metrics=metrics_store, clock=clock)

    app.dependency_overrides[get_qualification_controller] = lambda: controller
    app.dependency_overrides[get_job_scheduler] = lambda: scheduler
    app.dependency_overrides[get_metrics_aggregator] = lambda: aggregator
    app.dependency_overrides[get_settings_store] = lambda: FakeSettingsStore
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def revenue_rule(rules, make_rule):
    rules.rules.append(make_rule())


def test_ingest_meeting_qualifies(client, revenue_rule, raw_event):
    response = client.post("/users/user-1/meetings", json=raw_event(revenue="1,000,000"))

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "qualified"
    assert data["qualification_reason"].startswith("Enterprise revenue")
    assert data["status_history"][0]["source"] == "auto"


def test_ingest_malformed_event_is_422(client, raw_event):
    event = raw_event()
    del event["start"]

    response = client.post("/users/user-1/meetings", json=event)

    assert response.status_code == 422
    assert response.json()["field"] == "start"


def test_get_meeting_of_other_user_is_404(client, raw_event):
    meeting_id = client.post("/users/user-1/meetings", json=raw_event()).json()["id"]

    assert client.get(f"/users/user-1/meetings/{meeting_id}").status_code == 200
    assert client.get(f"/users/user-2/meetings/{meeting_id}").status_code == 404


def test_review_then_no_show(client, raw_event):
    meeting_id = client.post("/users/user-1/meetings", json=raw_event()).json()["id"]

    response = client.post(f"/users/user-1/meetings/{meeting_id}/review", json={"outcome": "qualified"})
    assert response.status_code == 200
    assert response.json()["status"] == "qualified"

    response = client.post(f"/users/user-1/meetings/{meeting_id}/no-show")
    assert response.status_code == 200
    assert response.json()["status"] == "no_show"
    assert response.json()["no_show_reason"] == "did_not_attend"


def test_invalid_transition_is_409(client, raw_event):
    meeting_id = client.post("/users/user-1/meetings", json=raw_event()).json()["id"]

    response = client.post(f"/users/user-1/meetings/{meeting_id}/complete")

    assert response.status_code == 409
    assert response.json()["from_status"] == "needs_review"
    assert response.json()["to_status"] == "completed"


def test_reevaluate_and_override(client, rules, make_rule, raw_event):
    meeting_id = client.post("/users/user-1/meetings", json=raw_event(revenue="3000000")).json()["id"]
    rules.rules.append(make_rule())

    response = client.post(f"/users/user-1/meetings/{meeting_id}/reevaluate")
    assert response.json()["status"] == "qualified"

    response = client.post(
        f"/users/user-1/meetings/{meeting_id}/status", json={"status": "disqualified", "reason": "Duplicate"}
    )
    assert response.json()["status"] == "disqualified"
    assert response.json()["qualification_reason"] == "Duplicate"


def test_cleanup_now_and_stats(client, calendar, rules, make_rule, raw_event):
    rules.rules.append(make_rule(field="industry", operator="eq", value="Gambling", action="disqualify"))
    client.post("/users/user-1/meetings", json=raw_event(industry="Gambling"))

    stats = client.get("/users/user-1/calendar/cleanup/stats").json()
    assert stats == {"total_disqualified": 1, "deleted_from_calendar": 0, "pending_deletion": 1}

    assert client.post("/users/user-1/calendar/cleanup").json() == {"deleted": 1, "errors": []}
    assert client.post("/users/user-1/calendar/cleanup").json() == {"deleted": 0, "errors": []}
    assert calendar.deleted == [("user-1", "evt-1")]


def test_sync_provider_failure_is_502(client, calendar):
    async def failing(user_id, start, end):
        raise GoogleCalendarError("Backend Error", status_code=500)

    calendar.list_events = failing

    response = client.post("/users/user-1/calendar/sync", json={"days_back": 0, "days_ahead": 7})

    assert response.status_code == 502


def test_failed_jobs_listing(client, sender, scheduler, revenue_rule, raw_event):
    client.post("/users/user-1/meetings", json=raw_event(revenue="2000000"))
    sender.error = PermanentExecutionError("Gmail not connected")
    asyncio.run(scheduler.run_once())

    response = client.get("/users/user-1/jobs/failed")
    assert response.status_code == 200
    assert [job["type"] for job in response.json()] == ["confirmation"]
    assert response.json()[0]["error_message"] == "Gmail not connected"


def test_settings_roundtrip(client):
    response = client.put("/users/user-1/settings/automation", json={"cleanupDelayMinutes": 15})
    assert response.status_code == 200
    assert response.json()["cleanupDelayMinutes"] == 15

    assert client.get("/users/user-1/settings/automation").json()["cleanupDelayMinutes"] == 15
    assert client.put("/users/user-1/settings/automation", json={"bogus": 1}).status_code == 422


def test_weekly_metrics(client, revenue_rule, raw_event):
    client.post("/users/user-1/meetings", json=raw_event(revenue="2000000"))

    response = client.get("/users/user-1/metrics/weekly", params={"weeks": 1})

    assert response.status_code == 200
    data = response.json()
    assert len(data["weeks"]) == 1
    assert data["weeks"][0]["auto_qualified"] == 1
    assert data["totals"]["time_saved_minutes"] == 5
    assert client.get("/users/user-1/metrics/weekly", params={"weeks": 60}).status_code == 422


def test_invalid_stored_settings_fall_back_to_defaults(client, raw_event):
    FakeSettingsStore.blobs["user-1"] = {"unknownKey": True}

    response = client.post("/users/user-1/meetings", json=raw_event())

    assert response.status_code == 201


def test_no_show_analytics(client, revenue_rule, raw_event, clock):
    meeting_id = client.post(
        "/users/user-1/meetings", json=raw_event(revenue="2000000", industry="Fintech")
    ).json()["id"]
    client.post(f"/users/user-1/meetings/{meeting_id}/no-show", json={"reason": "did_not_attend"})
    window = {"start": clock.now.isoformat(), "end": (clock.now + timedelta(days=7)).isoformat()}

    response = client.get("/users/user-1/metrics/no-shows", params=window)

    assert response.status_code == 200
    data = response.json()
    assert data["total_no_shows"] == 1
    assert data["no_show_rate"] == 100.0
    assert data["by_industry"] == [{"industry": "Fintech", "count": 1}]
    assert data["by_reason"] == [{"reason": "did_not_attend", "count": 1}]

    inverted = {"start": window["end"], "end": window["start"]}
    assert client.get("/users/user-1/metrics/no-shows", params=inverted).status_code == 422
