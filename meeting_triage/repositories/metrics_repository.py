"""
Persistence for weekly grooming-efficiency rollups.
One row per (user_id, week_start); recomputation overwrites it in place.
"""

from datetime import datetime

from meeting_triage.db.helpers import fetch_all, fetch_one
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.meeting_domain import WeeklyMetrics

logger = get_logger(__name__)


class MetricsRepository:
    COLUMNS = """
        user_id, week_start, week_end, total_meetings, auto_qualified,
        auto_disqualified, manual_review, time_spent_grooming_minutes,
        time_saved_minutes, automation_accuracy
    """

    @staticmethod
    def _row_to_metrics(row: dict | None) -> WeeklyMetrics | None:
        if not row:
            return None
        return WeeklyMetrics(
            user_id=str(row["user_id"]),
            week_start=row["week_start"],
            week_end=row["week_end"],
            total_meetings=row["total_meetings"],
            auto_qualified=row["auto_qualified"],
            auto_disqualified=row["auto_disqualified"],
            manual_review=row["manual_review"],
            time_spent_grooming_minutes=row["time_spent_grooming_minutes"],
            time_saved_minutes=row["time_saved_minutes"],
            automation_accuracy=float(row["automation_accuracy"]),
        )

    @classmethod
    async def upsert(cls, metrics: WeeklyMetrics) -> WeeklyMetrics:
        query = f"""
            INSERT INTO weekly_metrics ({cls.COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, week_start) DO UPDATE SET
                week_end = EXCLUDED.week_end,
                total_meetings = EXCLUDED.total_meetings,
                auto_qualified = EXCLUDED.auto_qualified,
                auto_disqualified = EXCLUDED.auto_disqualified,
                manual_review = EXCLUDED.manual_review,
                time_spent_grooming_minutes = EXCLUDED.time_spent_grooming_minutes,
                time_saved_minutes = EXCLUDED.time_saved_minutes,
                automation_accuracy = EXCLUDED.automation_accuracy,
                updated_at = NOW()
            RETURNING {cls.COLUMNS}
        """
        params = (
            metrics.user_id,
            metrics.week_start,
            metrics.week_end,
            metrics.total_meetings,
            metrics.auto_qualified,
            metrics.auto_disqualified,
            metrics.manual_review,
            metrics.time_spent_grooming_minutes,
            metrics.time_saved_minutes,
            metrics.automation_accuracy,
        )
        row = await fetch_one(query, params)
        logger.debug(
            "Weekly metrics stored",
            user_id=metrics.user_id,
            week_start=metrics.week_start.isoformat(),
            total_meetings=metrics.total_meetings,
        )
        return cls._row_to_metrics(row) or metrics

    @classmethod
    async def get(cls, user_id: str, week_start: datetime) -> WeeklyMetrics | None:
        query = f"SELECT {cls.COLUMNS} FROM weekly_metrics WHERE user_id = %s AND week_start = %s"
        return cls._row_to_metrics(await fetch_one(query, (user_id, week_start)))

    @classmethod
    async def list_range(cls, user_id: str, start: datetime, end: datetime) -> list[WeeklyMetrics]:
        query = f"""
            SELECT {cls.COLUMNS}
            FROM weekly_metrics
            WHERE user_id = %s AND week_start >= %s AND week_start < %s
            ORDER BY week_start
        """
        rows = await fetch_all(query, (user_id, start, end))
        return [cls._row_to_metrics(row) for row in rows]
