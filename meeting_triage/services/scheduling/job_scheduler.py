"""
Durable scheduler for time-triggered actions (emails and calendar cleanup).

One ``run_once`` cycle:
    1. return stale in_progress claims to pending
    2. fetch due pending jobs
    3. claim and execute each one with bounded concurrency and a timeout
    4. record sent / retry-with-backoff / failed

The conditional claim is what keeps a job from running twice; everything else
(the Redis ticker lease, the in-process semaphore) only reduces wasted work.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from meeting_triage.config import settings as app_settings
from meeting_triage.db.helpers import DatabaseError
from meeting_triage.errors import (
    IdempotentSuccess,
    PermanentExecutionError,
    TransientExecutionError,
    ValidationError,
)
from meeting_triage.infrastructure.observability.logging import get_logger, log_job_outcome
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.models.domain.meeting_domain import ScheduledJob
from meeting_triage.repositories.job_repository import JobRepository
from meeting_triage.repositories.user_repository import UserRepository
from meeting_triage.services.scheduling.executors import default_executors

logger = get_logger(__name__)

Outcome = Literal["sent", "retry", "failed", "skipped"]
Executor = Callable[[ScheduledJob, AutomationSettings], Awaitable[None]]
SettingsLookup = Callable[[str], Awaitable[AutomationSettings]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobScheduler:
    """Claims, executes and retries scheduled jobs."""

    def __init__(
        self,
        jobs=JobRepository,
        executors: dict[str, Executor] | None = None,
        settings_for: SettingsLookup | None = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
        batch_size: int | None = None,
        max_concurrent: int | None = None,
        execution_timeout: float | None = None,
        claim_lease_seconds: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_cap_seconds: float | None = None,
    ):
        config = app_settings.get_scheduler_config()
        self._jobs = jobs
        self._executors = executors
        self._settings_for = settings_for or UserRepository.get_automation_settings
        self._clock = clock
        self._rng = rng or random.Random()
        self.batch_size = batch_size or config["batch_size"]
        self.max_concurrent = max_concurrent or config["max_concurrent"]
        self.execution_timeout = execution_timeout or config["execution_timeout_seconds"]
        self.claim_lease = timedelta(seconds=claim_lease_seconds or config["claim_lease_seconds"])
        self.backoff_base = backoff_base_seconds or config["backoff_base_seconds"]
        self.backoff_cap = backoff_cap_seconds or config["backoff_cap_seconds"]

    @property
    def executors(self) -> dict[str, Executor]:
        if self._executors is None:
            self._executors = default_executors()
        return self._executors

    async def enqueue(self, job: ScheduledJob) -> str:
        """Queue a job; an identical intent (same meeting and type) returns the existing id."""
        stored = await self._jobs.enqueue(job)
        return stored.id

    async def poll(self, now: datetime | None = None) -> list[ScheduledJob]:
        return await self._jobs.fetch_due(now or self._clock(), self.batch_size)

    def backoff(self, retry_count: int) -> timedelta:
        """Full jitter over min(cap, base * 2^(retry_count - 1))."""
        ceiling = min(self.backoff_cap, self.backoff_base * (2 ** max(retry_count - 1, 0)))
        return timedelta(seconds=self._rng.uniform(0, ceiling))

    async def _load_settings(self, user_id: str) -> AutomationSettings:
        try:
            return await self._settings_for(user_id)
        except ValidationError as e:
            logger.warning("Invalid automation settings, using defaults", user_id=user_id, error=str(e))
            return AutomationSettings()

    async def execute(self, job: ScheduledJob, now: datetime | None = None) -> Outcome:
        """
        Claim and run one job, then record the result.

        Returns:
            "skipped" when another worker claimed it first, otherwise the recorded outcome
        """
        now = now or self._clock()
        user_settings = await self._load_settings(job.user_id)

        claimed = await self._jobs.claim(job.id, now)
        if claimed is None:
            logger.debug("Job already claimed elsewhere", job_id=job.id)
            return "skipped"

        executor = self.executors.get(claimed.type)
        try:
            if executor is None:
                raise PermanentExecutionError(f"No executor for job type {claimed.type}")
            await asyncio.wait_for(executor(claimed, user_settings), timeout=self.execution_timeout)

        except IdempotentSuccess as e:
            await self._jobs.mark_sent(claimed.id, now)
            log_job_outcome(claimed.id, claimed.type, "idempotent_success", claimed.retry_count, str(e))
            return "sent"

        except (PermanentExecutionError, ValidationError) as e:
            await self._jobs.mark_failed(claimed.id, claimed.retry_count, str(e))
            log_job_outcome(claimed.id, claimed.type, "permanent_failure", claimed.retry_count, str(e))
            return "failed"

        except TimeoutError:
            return await self._record_retry(
                claimed, f"Execution timed out after {self.execution_timeout}s", user_settings, now
            )

        except (TransientExecutionError, DatabaseError) as e:
            return await self._record_retry(claimed, str(e), user_settings, now)

        except Exception as e:
            logger.exception("Unexpected job execution error", job_id=claimed.id, job_type=claimed.type)
            return await self._record_retry(claimed, f"{type(e).__name__}: {e}", user_settings, now)

        await self._jobs.mark_sent(claimed.id, now)
        log_job_outcome(claimed.id, claimed.type, "sent", claimed.retry_count)
        return "sent"

    async def _record_retry(
        self, job: ScheduledJob, error: str, user_settings: AutomationSettings, now: datetime
    ) -> Outcome:
        retry_count = job.retry_count + 1

        if retry_count >= user_settings.max_job_retries:
            await self._jobs.mark_failed(job.id, retry_count, error)
            log_job_outcome(job.id, job.type, "permanent_failure", retry_count, f"retries exhausted: {error}")
            return "failed"

        next_attempt = now + self.backoff(retry_count)
        await self._jobs.reschedule(job.id, retry_count, next_attempt, error)
        log_job_outcome(job.id, job.type, "retryable_failure", retry_count, error)
        return "retry"

    async def run_once(self, now: datetime | None = None) -> dict[str, Any]:
        """One ticker cycle; one job's failure never stops the others."""
        now = now or self._clock()
        started = self._clock()

        released = await self._jobs.release_stale_claims(now - self.claim_lease)
        due = await self.poll(now)

        metrics: dict[str, Any] = {
            "released_stale": released,
            "due": len(due),
            "sent": 0,
            "retry": 0,
            "failed": 0,
            "skipped": 0,
            "errors": 0,
        }
        if not due:
            return metrics

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run_job(job: ScheduledJob) -> Outcome | None:
            async with semaphore:
                try:
                    return await self.execute(job, now)
                except Exception as e:
                    logger.error("Job bookkeeping failed", job_id=job.id, error=str(e))
                    return None

        for outcome in await asyncio.gather(*(run_job(job) for job in due)):
            metrics["errors" if outcome is None else outcome] += 1

        metrics["duration_seconds"] = round((self._clock() - started).total_seconds(), 3)
        logger.info("Job scheduler cycle completed", **metrics)
        return metrics

    async def list_failed(self, user_id: str, limit: int = 100) -> list[ScheduledJob]:
        return await self._jobs.list_failed(user_id, limit)


job_scheduler = JobScheduler()


def get_job_scheduler() -> JobScheduler:
    return job_scheduler
