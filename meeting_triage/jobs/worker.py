"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, opens the database pool and delegates to the matching
scheduler loop. Redis connects lazily on the first ticker lease.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from meeting_triage.config import settings
from meeting_triage.db.pool import db_pool
from meeting_triage.infrastructure.observability.logging import get_logger, setup_logging
from meeting_triage.jobs.job_ticker import start_job_ticker_scheduler
from meeting_triage.jobs.metrics_rollup_job import start_metrics_rollup_scheduler
from meeting_triage.services.redis_client import redis_client

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "job_ticker": start_job_ticker_scheduler,
    "metrics_rollup": start_metrics_rollup_scheduler,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "job_ticker").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job until it exits or is cancelled."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    try:
        await JOB_REGISTRY[name]()
    finally:
        await redis_client.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
