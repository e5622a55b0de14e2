# meeting_triage/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from meeting_triage.config import settings
from meeting_triage.db.pool import db_health_check
from meeting_triage.jobs.job_ticker import job_ticker
from meeting_triage.services.redis_client import redis_client

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "meeting-triage"}


@router.get("/readyz")
async def readyz():
    """Readiness check covering the database pool and, when configured, Redis."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    db_health = await db_health_check()
    checks["database"] = {
        "ok": db_health.get("healthy", False),
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if "pool_stats" in db_health:
        checks["database"]["pool_stats"] = db_health["pool_stats"]
    if not checks["database"]["ok"]:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    overall_ok = overall_ok and checks["database"]["ok"]

    if redis_client.enabled:
        t0 = time.time()
        redis_ok = await redis_client.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok
    else:
        checks["redis"] = {"ok": True, "enabled": False}

    checks["configuration"] = {"ok": True, "environment": settings.environment}

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()


@router.get("/health/scheduler")
async def scheduler_health():
    """Job ticker status as seen by this process."""
    return job_ticker.health_check()
