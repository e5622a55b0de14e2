"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from meeting_triage.main import app

client = TestClient(app)


def test_healthz_endpoint():
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readyz_all_services_healthy():
    with (
        patch("meeting_triage.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("meeting_triage.routes.health.redis_client") as redis_client,
    ):
        redis_client.enabled = True
        redis_client.ping = AsyncMock(return_value=True)

        data = client.get("/readyz").json()

    assert data["overall_ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["redis"]["ok"] is True
    assert isinstance(data["checks"]["database"]["latency_ms"], (int, float))


def test_readyz_database_unhealthy():
    with (
        patch(
            "meeting_triage.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": False, "error": "Connection failed"}),
        ),
        patch("meeting_triage.routes.health.redis_client") as redis_client,
    ):
        redis_client.enabled = False

        data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Connection failed"
    assert data["checks"]["redis"] == {"ok": True, "enabled": False}


def test_readyz_redis_unhealthy():
    with (
        patch("meeting_triage.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("meeting_triage.routes.health.redis_client") as redis_client,
    ):
        redis_client.enabled = True
        redis_client.ping = AsyncMock(return_value=False)

        response = client.get("/readyz")

    assert response.status_code == 200
    assert response.json()["overall_ok"] is False


def test_scheduler_health_reports_configuration():
    data = client.get("/health/scheduler").json()

    assert data["service"] == "job_ticker"
    assert "batch_size" in data["configuration"]


def test_request_id_is_echoed():
    generated = client.get("/healthz")
    assert generated.headers["X-Request-ID"]

    echoed = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert echoed.headers["X-Request-ID"] == "req-123"
