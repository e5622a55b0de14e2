"""
Persistence helpers for meetings.

Every method accepts an optional ``connection`` so the qualification controller
can run a status change and the jobs it enqueues inside one transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from meeting_triage.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.meeting_domain import Meeting, StatusChange

logger = get_logger(__name__)


class MeetingRepositoryError(DatabaseError):
    """More specific exception for meeting repository failures."""


class MeetingRepository:
    """SQL access for the meetings table."""

    SELECT_COLUMNS = """
        id, user_id, external_id, title, start_time, end_time,
        attendee_email, attendee_name, company, revenue, company_size,
        industry, budget, form_data, status, qualification_reason,
        no_show_reason, no_show_marked_at, last_processed, status_history,
        calendar_deleted, calendar_deleted_at, created_at
    """

    @classmethod
    def _row_to_meeting(cls, row: dict | None) -> Meeting | None:
        if not row:
            return None

        return Meeting(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            external_id=row["external_id"],
            title=row["title"],
            start=row["start_time"],
            end=row["end_time"],
            attendee_email=row.get("attendee_email"),
            attendee_name=row.get("attendee_name"),
            company=row.get("company"),
            revenue=_as_decimal(row.get("revenue")),
            company_size=row.get("company_size"),
            industry=row.get("industry"),
            budget=_as_decimal(row.get("budget")),
            form_data=row.get("form_data") or {},
            status=row["status"],
            qualification_reason=row.get("qualification_reason"),
            no_show_reason=row.get("no_show_reason"),
            no_show_marked_at=row.get("no_show_marked_at"),
            last_processed=row.get("last_processed"),
            status_history=[StatusChange.from_dict(item) for item in row.get("status_history") or []],
            calendar_deleted=bool(row.get("calendar_deleted")),
            calendar_deleted_at=row.get("calendar_deleted_at"),
            created_at=row.get("created_at"),
        )

    @classmethod
    async def get(
        cls, meeting_id: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> Meeting | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM meetings WHERE id = %s"
        return cls._row_to_meeting(await fetch_one(query, (meeting_id,), connection=connection))

    @classmethod
    async def get_for_update(
        cls, meeting_id: str, *, connection: psycopg.AsyncConnection
    ) -> Meeting | None:
        """Load a meeting and hold its row lock until the surrounding transaction ends."""
        query = f"SELECT {cls.SELECT_COLUMNS} FROM meetings WHERE id = %s FOR UPDATE"
        return cls._row_to_meeting(await fetch_one(query, (meeting_id,), connection=connection))

    @classmethod
    async def get_by_external_id(
        cls,
        user_id: str,
        external_id: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> Meeting | None:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM meetings
            WHERE user_id = %s AND external_id = %s
            FOR UPDATE
        """
        return cls._row_to_meeting(
            await fetch_one(query, (user_id, external_id), connection=connection)
        )

    @classmethod
    async def insert(
        cls, meeting: Meeting, *, connection: psycopg.AsyncConnection | None = None
    ) -> Meeting:
        """Insert a newly observed meeting and return it with its id."""
        query = f"""
            INSERT INTO meetings (
                user_id, external_id, title, start_time, end_time,
                attendee_email, attendee_name, company, revenue, company_size,
                industry, budget, form_data, status, status_history
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.SELECT_COLUMNS}
        """
        params = (
            meeting.user_id,
            meeting.external_id,
            meeting.title,
            meeting.start,
            meeting.end,
            meeting.attendee_email,
            meeting.attendee_name,
            meeting.company,
            meeting.revenue,
            meeting.company_size,
            meeting.industry,
            meeting.budget,
            Jsonb(meeting.form_data or {}),
            meeting.status,
            Jsonb([change.to_dict() for change in meeting.status_history]),
        )

        row = await fetch_one(query, params, connection=connection)
        if not row:
            raise MeetingRepositoryError("Failed to insert meeting", operation="insert_meeting")

        logger.info("Meeting stored", user_id=meeting.user_id, external_id=meeting.external_id)
        return cls._row_to_meeting(row)

    @classmethod
    async def update(
        cls, meeting: Meeting, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        """Write back every mutable column of ``meeting``."""
        query = """
            UPDATE meetings
            SET title = %s,
                start_time = %s,
                end_time = %s,
                attendee_email = %s,
                attendee_name = %s,
                company = %s,
                revenue = %s,
                company_size = %s,
                industry = %s,
                budget = %s,
                form_data = %s,
                status = %s,
                qualification_reason = %s,
                no_show_reason = %s,
                no_show_marked_at = %s,
                last_processed = %s,
                status_history = %s,
                calendar_deleted = %s,
                calendar_deleted_at = %s
            WHERE id = %s
        """
        params = (
            meeting.title,
            meeting.start,
            meeting.end,
            meeting.attendee_email,
            meeting.attendee_name,
            meeting.company,
            meeting.revenue,
            meeting.company_size,
            meeting.industry,
            meeting.budget,
            Jsonb(meeting.form_data or {}),
            meeting.status,
            meeting.qualification_reason,
            meeting.no_show_reason,
            meeting.no_show_marked_at,
            meeting.last_processed,
            Jsonb([change.to_dict() for change in meeting.status_history]),
            meeting.calendar_deleted,
            meeting.calendar_deleted_at,
            meeting.id,
        )

        updated = await execute_query(query, params, connection=connection)
        if updated != 1:
            raise MeetingRepositoryError(
                f"Meeting update affected {updated} rows", operation="update_meeting"
            )

    @classmethod
    @with_db_retry(max_retries=2)
    async def list_in_range(cls, user_id: str, start: datetime, end: datetime) -> list[Meeting]:
        """Meetings whose start falls in ``[start, end)``, oldest first."""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM meetings
            WHERE user_id = %s
              AND start_time >= %s
              AND start_time < %s
            ORDER BY start_time, id
        """
        rows = await fetch_all(query, (user_id, start, end))
        return [cls._row_to_meeting(row) for row in rows]

    @classmethod
    async def list_pending_cleanup(cls, user_id: str) -> list[Meeting]:
        """Disqualified meetings still present on the provider calendar."""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM meetings
            WHERE user_id = %s
              AND status = 'disqualified'
              AND calendar_deleted = false
            ORDER BY start_time, id
        """
        rows = await fetch_all(query, (user_id,))
        return [cls._row_to_meeting(row) for row in rows]

    @classmethod
    async def cleanup_stats(cls, user_id: str) -> dict[str, int]:
        query = """
            SELECT
                COUNT(*) AS total_disqualified,
                COUNT(*) FILTER (WHERE calendar_deleted) AS deleted_from_calendar,
                COUNT(*) FILTER (WHERE NOT calendar_deleted) AS pending_deletion
            FROM meetings
            WHERE user_id = %s AND status = 'disqualified'
        """
        row = await fetch_one(query, (user_id,)) or {}
        return {
            "total_disqualified": row.get("total_disqualified", 0) or 0,
            "deleted_from_calendar": row.get("deleted_from_calendar", 0) or 0,
            "pending_deletion": row.get("pending_deletion", 0) or 0,
        }

    @classmethod
    async def list_user_ids(cls) -> list[str]:
        rows = await fetch_all("SELECT DISTINCT user_id FROM meetings ORDER BY user_id")
        return [str(row["user_id"]) for row in rows]


def _as_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))
