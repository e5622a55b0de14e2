"""
Weekly grooming-efficiency rollup and no-show analytics.

For each user and week (Monday 00:00 UTC) counts how many meetings were decided
automatically versus by a human, converts that into minutes saved and spent,
and upserts one WeeklyMetrics row. Read-only on meetings, so re-running a week
is always safe.
"""

from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from meeting_triage.errors import ValidationError
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.models.domain.meeting_domain import Meeting, NoShowAnalytics, WeeklyMetrics
from meeting_triage.repositories.meeting_repository import MeetingRepository
from meeting_triage.repositories.metrics_repository import MetricsRepository

logger = get_logger(__name__)

WEEK = timedelta(days=7)
MAX_WEEKS = 52
NO_SHOW_WINDOW = timedelta(days=90)
# Statuses of meetings that were expected to take place
ATTENDABLE_STATUSES = ("qualified", "completed", "no_show")

COMPANY_SIZE_BUCKETS = ((10, "1-10"), (50, "11-50"), (200, "51-200"), (1000, "201-1000"))
REVENUE_BUCKETS = ((10_000, "$0-$10K"), (50_000, "$10K-$50K"), (100_000, "$50K-$100K"), (500_000, "$100K-$500K"))


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def week_start_for(moment: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing ``moment``."""
    moment = moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment.astimezone(UTC)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return day - timedelta(days=day.weekday())


class MetricsAggregator:
    def __init__(
        self,
        meetings=MeetingRepository,
        metrics=MetricsRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._meetings = meetings
        self._metrics = metrics
        self._clock = clock

    async def compute_week(
        self, user_id: str, week_start: datetime, settings: AutomationSettings | None = None
    ) -> WeeklyMetrics:
        """
        Recompute and store one week for one user.

        Args:
            user_id: Owner of the meetings
            week_start: Start of the window; the window is [week_start, week_start + 7d)
            settings: Supplies the minutes-per-decision constants

        Returns:
            WeeklyMetrics: The stored record
        """
        settings = settings or AutomationSettings()
        if week_start.tzinfo is None:
            week_start = week_start.replace(tzinfo=UTC)
        week_end = week_start + WEEK

        auto_qualified = auto_disqualified = manual_review = 0
        meetings = await self._meetings.list_in_range(user_id, week_start, week_end)

        for meeting in meetings:
            if meeting.had_manual_decision():
                manual_review += 1
                continue

            decision = meeting.qualification_decision()
            if decision == "qualified":
                auto_qualified += 1
            elif decision == "disqualified":
                auto_disqualified += 1

        total = len(meetings)
        automated = auto_qualified + auto_disqualified
        metrics = WeeklyMetrics(
            user_id=user_id,
            week_start=week_start,
            week_end=week_end,
            total_meetings=total,
            auto_qualified=auto_qualified,
            auto_disqualified=auto_disqualified,
            manual_review=manual_review,
            time_spent_grooming_minutes=manual_review * settings.time_per_manual_review_minutes,
            time_saved_minutes=automated * settings.time_per_auto_decision_minutes,
            automation_accuracy=round(automated / total, 4) if total else 0.0,
        )

        await self._metrics.upsert(metrics)
        logger.info(
            "Weekly metrics computed",
            user_id=user_id,
            week_start=week_start.isoformat(),
            total_meetings=total,
            automation_accuracy=metrics.automation_accuracy,
        )
        return metrics

    async def get_weekly_metrics(
        self, user_id: str, weeks: int = 4, settings: AutomationSettings | None = None
    ) -> list[WeeklyMetrics]:
        """Recompute the last ``weeks`` weeks (current week included), oldest first."""
        if not 1 <= weeks <= MAX_WEEKS:
            raise ValidationError(f"weeks must be between 1 and {MAX_WEEKS}", field="weeks")

        current = week_start_for(self._clock())
        return [
            await self.compute_week(user_id, current - WEEK * offset, settings)
            for offset in range(weeks - 1, -1, -1)
        ]

    async def no_show_analytics(
        self, user_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> NoShowAnalytics:
        """
        No-show rate and where no-shows cluster, for meetings starting in ``[start, end)``.

        The rate is a percentage of meetings that were expected to happen
        (qualified, completed or no-show). Hours are UTC.

        Args:
            user_id: Owner of the meetings
            start: Window start; defaults to 90 days before ``end``
            end: Window end; defaults to now

        Raises:
            ValidationError: If the window is empty or inverted
        """
        end = _as_utc(end or self._clock())
        start = _as_utc(start or end - NO_SHOW_WINDOW)
        if start >= end:
            raise ValidationError("start must be before end", field="start")

        meetings = await self._meetings.list_in_range(user_id, start, end)
        attendable = [m for m in meetings if m.status in ATTENDABLE_STATUSES]
        no_shows = [m for m in attendable if m.status == "no_show"]
        rate = round(len(no_shows) / len(attendable) * 100, 2) if attendable else 0.0

        analytics = NoShowAnalytics(
            user_id=user_id,
            start=start,
            end=end,
            total_meetings=len(attendable),
            total_no_shows=len(no_shows),
            no_show_rate=rate,
            by_hour=_breakdown(no_shows, "hour", lambda m: m.start.astimezone(UTC).hour, by_key=True),
            by_industry=_breakdown(no_shows, "industry", lambda m: m.industry),
            by_company_size=_breakdown(no_shows, "size_range", _company_size_bucket),
            by_revenue=_breakdown(no_shows, "revenue_range", _revenue_bucket),
            by_reason=_breakdown(no_shows, "reason", lambda m: m.no_show_reason),
        )
        logger.info(
            "No-show analytics computed",
            user_id=user_id,
            total_meetings=analytics.total_meetings,
            total_no_shows=analytics.total_no_shows,
            no_show_rate=rate,
        )
        return analytics


def _breakdown(
    meetings: list[Meeting], label: str, key: Callable[[Meeting], object], by_key: bool = False
) -> list[dict[str, object]]:
    """Count meetings per non-empty key; most frequent first unless ``by_key``."""
    counts = Counter(value for value in map(key, meetings) if value is not None and value != "")
    items = sorted(counts.items()) if by_key else sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
    return [{label: value, "count": count} for value, count in items]


def _company_size_bucket(meeting: Meeting) -> str | None:
    if not meeting.company_size:
        return None
    for upper, label in COMPANY_SIZE_BUCKETS:
        if meeting.company_size < upper:
            return label
    return "1000+"


def _revenue_bucket(meeting: Meeting) -> str | None:
    if not meeting.revenue:
        return None
    for upper, label in REVENUE_BUCKETS:
        if meeting.revenue < upper:
            return label
    return "$500K+"


metrics_aggregator = MetricsAggregator()


def get_metrics_aggregator() -> MetricsAggregator:
    return metrics_aggregator
