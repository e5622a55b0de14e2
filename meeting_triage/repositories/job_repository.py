"""
Persistence layer for scheduled jobs.

Status moves forward only. ``claim`` is the single place a job leaves
``pending``, and it is a conditional update so two tickers can never both win.
"""

from datetime import datetime

import psycopg

from meeting_triage.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.meeting_domain import LIVE_JOB_STATUSES, ScheduledJob

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 500


class JobRepositoryError(DatabaseError):
    """More specific exception for job repository failures."""


class JobRepository:
    """SQL access for the scheduled_jobs table."""

    JOB_SELECT_COLUMNS = """
        id, user_id, meeting_id, type, status, scheduled_at, sent_at,
        retry_count, error_message, claimed_at, created_at
    """

    @classmethod
    def _row_to_job(cls, row: dict | None) -> ScheduledJob | None:
        if not row:
            return None

        return ScheduledJob(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            meeting_id=str(row["meeting_id"]),
            type=row["type"],
            status=row["status"],
            scheduled_at=row["scheduled_at"],
            sent_at=row.get("sent_at"),
            retry_count=row["retry_count"],
            error_message=row.get("error_message"),
            claimed_at=row.get("claimed_at"),
            created_at=row.get("created_at"),
        )

    @classmethod
    async def enqueue(
        cls, job: ScheduledJob, *, connection: psycopg.AsyncConnection | None = None
    ) -> ScheduledJob:
        """
        Insert a pending job, or return the live job already holding its dedupe key.

        Jobs that are sent or failed no longer count, so a meeting that
        re-enters a status gets fresh jobs for it.
        """
        insert_query = f"""
            INSERT INTO scheduled_jobs (
                user_id, meeting_id, type, status, scheduled_at, retry_count, dedupe_key
            )
            VALUES (%s, %s, %s, 'pending', %s, 0, %s)
            ON CONFLICT (dedupe_key) WHERE status IN ('pending', 'in_progress') DO NOTHING
            RETURNING {cls.JOB_SELECT_COLUMNS}
        """
        row = await fetch_one(
            insert_query,
            (job.user_id, job.meeting_id, job.type, job.scheduled_at, job.dedupe_key),
            connection=connection,
        )

        if row:
            logger.info(
                "Scheduled job enqueued",
                job_id=str(row["id"]),
                job_type=job.type,
                meeting_id=job.meeting_id,
                scheduled_at=job.scheduled_at.isoformat(),
            )
            return cls._row_to_job(row)

        existing = await fetch_one(
            f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM scheduled_jobs
            WHERE dedupe_key = %s AND status = ANY(%s)
            """,
            (job.dedupe_key, list(LIVE_JOB_STATUSES)),
            connection=connection,
        )
        if not existing:
            raise JobRepositoryError("Failed to enqueue job", operation="enqueue_job")

        logger.debug("Scheduled job already queued", job_id=str(existing["id"]), dedupe_key=job.dedupe_key)
        return cls._row_to_job(existing)

    @classmethod
    async def get(cls, job_id: str) -> ScheduledJob | None:
        query = f"SELECT {cls.JOB_SELECT_COLUMNS} FROM scheduled_jobs WHERE id = %s"
        return cls._row_to_job(await fetch_one(query, (job_id,)))

    @classmethod
    @with_db_retry(max_retries=2)
    async def fetch_due(cls, now: datetime, limit: int) -> list[ScheduledJob]:
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM scheduled_jobs
            WHERE status = 'pending'
              AND scheduled_at <= %s
            ORDER BY scheduled_at, id
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [cls._row_to_job(row) for row in rows]

    @classmethod
    async def claim(cls, job_id: str, now: datetime) -> ScheduledJob | None:
        """Move pending → in_progress; None when another worker got there first."""
        query = f"""
            UPDATE scheduled_jobs
            SET status = 'in_progress',
                claimed_at = %s
            WHERE id = %s
              AND status = 'pending'
              AND scheduled_at <= %s
            RETURNING {cls.JOB_SELECT_COLUMNS}
        """
        return cls._row_to_job(await fetch_one(query, (now, job_id, now)))

    @classmethod
    async def mark_sent(cls, job_id: str, now: datetime) -> None:
        query = """
            UPDATE scheduled_jobs
            SET status = 'sent',
                sent_at = %s,
                error_message = NULL,
                claimed_at = NULL
            WHERE id = %s AND status = 'in_progress'
        """
        await execute_query(query, (now, job_id))

    @classmethod
    async def reschedule(
        cls, job_id: str, retry_count: int, scheduled_at: datetime, error_message: str
    ) -> None:
        query = """
            UPDATE scheduled_jobs
            SET status = 'pending',
                retry_count = %s,
                scheduled_at = %s,
                error_message = %s,
                claimed_at = NULL
            WHERE id = %s AND status = 'in_progress'
        """
        await execute_query(
            query, (retry_count, scheduled_at, (error_message or "")[:MAX_ERROR_LENGTH], job_id)
        )

    @classmethod
    async def reschedule_pending(
        cls,
        meeting_id: str,
        job_type: str,
        scheduled_at: datetime,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> int:
        """Move the not-yet-claimed job of ``job_type`` for a meeting to a new time."""
        query = """
            UPDATE scheduled_jobs
            SET scheduled_at = %s
            WHERE meeting_id = %s
              AND type = %s
              AND status = 'pending'
        """
        moved = await execute_query(query, (scheduled_at, meeting_id, job_type), connection=connection)
        if moved:
            logger.info(
                "Scheduled job moved",
                meeting_id=meeting_id,
                job_type=job_type,
                scheduled_at=scheduled_at.isoformat(),
            )
        return moved

    @classmethod
    async def mark_failed(cls, job_id: str, retry_count: int, error_message: str) -> None:
        truncated_error = (error_message or "")[:MAX_ERROR_LENGTH]
        query = """
            UPDATE scheduled_jobs
            SET status = 'failed',
                retry_count = %s,
                error_message = %s,
                claimed_at = NULL
            WHERE id = %s AND status = 'in_progress'
        """
        await execute_query(query, (retry_count, truncated_error, job_id))
        logger.warning("Scheduled job failed", job_id=job_id, error=truncated_error)

    @classmethod
    async def release_stale_claims(cls, cutoff: datetime) -> int:
        """Return jobs abandoned mid-execution (worker crash) to the queue."""
        query = """
            UPDATE scheduled_jobs
            SET status = 'pending',
                claimed_at = NULL
            WHERE status = 'in_progress'
              AND claimed_at < %s
        """
        released = await execute_query(query, (cutoff,))
        if released:
            logger.warning("Released stale job claims", count=released, cutoff=cutoff.isoformat())
        return released

    @classmethod
    async def list_failed(cls, user_id: str, limit: int = 100) -> list[ScheduledJob]:
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM scheduled_jobs
            WHERE user_id = %s AND status = 'failed'
            ORDER BY scheduled_at DESC, id
            LIMIT %s
        """
        rows = await fetch_all(query, (user_id, limit))
        return [cls._row_to_job(row) for row in rows]
