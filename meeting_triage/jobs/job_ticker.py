"""
Job ticker - drives the scheduled-job queue.

Every JOB_TICK_INTERVAL_SECONDS the ticker runs one scheduler cycle: release
stale claims, execute due jobs, record outcomes. A Redis lease keeps replicas
from running overlapping cycles; when another replica holds it, the cycle is
skipped.

Usage:
    python -m meeting_triage.jobs.worker job_ticker
"""

import asyncio
import os
import socket
from datetime import UTC, datetime
from typing import Any

from meeting_triage.config import settings
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.services.redis_client import LeaseRedisClient, redis_client
from meeting_triage.services.scheduling.job_scheduler import JobScheduler, job_scheduler

logger = get_logger(__name__)

LEASE_NAME = "job_ticker"


class JobTicker:
    """One-cycle-at-a-time wrapper around the job scheduler."""

    def __init__(
        self,
        scheduler: JobScheduler | None = None,
        lease: LeaseRedisClient | None = None,
        holder: str | None = None,
    ):
        self.scheduler = scheduler or job_scheduler
        self.lease = lease or redis_client
        self.holder = holder or f"{socket.gethostname()}:{os.getpid()}"
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.last_metrics: dict[str, Any] | None = None

    async def run_once(self) -> dict[str, Any]:
        if self.is_running:
            logger.warning("Job ticker cycle already running, skipping")
            return {"skipped": True, "reason": "already_running"}

        # Outlive one interval so a slow cycle is not overlapped by the next tick
        lease_ttl = max(settings.JOB_TICK_INTERVAL_SECONDS * 2, int(settings.JOB_EXECUTION_TIMEOUT_SECONDS) + 10)
        if not await self.lease.acquire_lease(LEASE_NAME, self.holder, lease_ttl):
            logger.debug("Job ticker lease held by another worker, skipping")
            return {"skipped": True, "reason": "lease_held"}

        self.is_running = True
        try:
            metrics = await self.scheduler.run_once()
        finally:
            self.is_running = False
            await self.lease.release_lease(LEASE_NAME, self.holder)

        self.last_run_time = datetime.now(UTC)
        self.last_metrics = metrics
        return metrics

    def health_check(self) -> dict[str, Any]:
        now = datetime.now(UTC)
        overdue_after = settings.JOB_TICK_INTERVAL_SECONDS * 3
        is_overdue = (
            self.last_run_time is not None and (now - self.last_run_time).total_seconds() > overdue_after
        )
        return {
            "healthy": not is_overdue,
            "service": "job_ticker",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_metrics": self.last_metrics,
            "configuration": settings.get_scheduler_config(),
        }


# Singleton instance for application use
job_ticker = JobTicker()


async def run_job_ticker() -> dict[str, Any]:
    """Run a single ticker cycle."""
    return await job_ticker.run_once()


async def start_job_ticker_scheduler() -> None:
    """Run ticker cycles forever at the configured interval."""
    interval = settings.JOB_TICK_INTERVAL_SECONDS
    logger.info("Starting job ticker", interval_seconds=interval)

    while True:
        try:
            await run_job_ticker()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Job ticker stopped")
            raise
        except Exception as e:
            logger.error("Error in job ticker", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(interval)
