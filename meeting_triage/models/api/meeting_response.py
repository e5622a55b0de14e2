# meeting_triage/models/api/meeting_response.py
"""
Meeting API response models.
Built from the domain dataclasses by the routes.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from meeting_triage.models.domain.meeting_domain import Meeting, NoShowAnalytics, ScheduledJob, WeeklyMetrics


class StatusChangeResponse(BaseModel):
    status: str
    source: str
    at: datetime
    reason: str | None = None


class MeetingResponse(BaseModel):
    """A meeting with its current qualification state."""

    id: str = Field(..., description="Meeting ID")
    user_id: str = Field(..., description="Owning user")
    external_id: str = Field(..., description="Calendar provider event ID")
    title: str = Field(..., description="Event title")
    start: datetime
    end: datetime
    attendee_email: str | None = None
    attendee_name: str | None = None
    company: str | None = None
    revenue: Decimal | None = None
    company_size: int | None = None
    industry: str | None = None
    budget: Decimal | None = None
    status: str = Field(..., description="Current meeting status")
    qualification_reason: str | None = Field(None, description="Why the last decision was made")
    no_show_reason: str | None = None
    no_show_marked_at: datetime | None = None
    last_processed: datetime | None = None
    calendar_deleted: bool = False
    status_history: list[StatusChangeResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, meeting: Meeting) -> "MeetingResponse":
        return cls(
            id=meeting.id,
            user_id=meeting.user_id,
            external_id=meeting.external_id,
            title=meeting.title,
            start=meeting.start,
            end=meeting.end,
            attendee_email=meeting.attendee_email,
            attendee_name=meeting.attendee_name,
            company=meeting.company,
            revenue=meeting.revenue,
            company_size=meeting.company_size,
            industry=meeting.industry,
            budget=meeting.budget,
            status=meeting.status,
            qualification_reason=meeting.qualification_reason,
            no_show_reason=meeting.no_show_reason,
            no_show_marked_at=meeting.no_show_marked_at,
            last_processed=meeting.last_processed,
            calendar_deleted=meeting.calendar_deleted,
            status_history=[
                StatusChangeResponse(status=c.status, source=c.source, at=c.at, reason=c.reason)
                for c in meeting.status_history
            ],
        )


class JobResponse(BaseModel):
    """A scheduled job as shown in the failed-jobs listing."""

    id: str
    meeting_id: str
    type: str
    status: str
    scheduled_at: datetime
    sent_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None

    @classmethod
    def from_domain(cls, job: ScheduledJob) -> "JobResponse":
        return cls(
            id=str(job.id),
            meeting_id=job.meeting_id,
            type=job.type,
            status=job.status,
            scheduled_at=job.scheduled_at,
            sent_at=job.sent_at,
            retry_count=job.retry_count,
            error_message=job.error_message,
        )


class CleanupResponse(BaseModel):
    """Result of a manual calendar cleanup run."""

    deleted: int = Field(..., description="Meetings removed from the calendar")
    errors: list[str] = Field(default_factory=list, description="Per-meeting failures")


class CleanupStatsResponse(BaseModel):
    total_disqualified: int = Field(..., description="Disqualified meetings")
    deleted_from_calendar: int = Field(..., description="Disqualified meetings already removed")
    pending_deletion: int = Field(..., description="Disqualified meetings still on the calendar")


class SyncResponse(BaseModel):
    """Counts from a calendar sync."""

    imported: int = Field(..., description="New meetings stored")
    processed: int = Field(..., description="Known meetings refreshed")
    skipped: int = Field(..., description="Events that were not business meetings")
    errors: list[str] = Field(default_factory=list)


class WeeklyMetricsResponse(BaseModel):
    user_id: str
    week_start: datetime
    week_end: datetime
    total_meetings: int
    auto_qualified: int
    auto_disqualified: int
    manual_review: int
    time_spent_grooming_minutes: int
    time_saved_minutes: int
    automation_accuracy: float

    @classmethod
    def from_domain(cls, metrics: WeeklyMetrics) -> "WeeklyMetricsResponse":
        return cls(**metrics.to_dict())


class WeeklyMetricsListResponse(BaseModel):
    user_id: str
    weeks: list[WeeklyMetricsResponse]
    totals: dict[str, Any] = Field(default_factory=dict, description="Sums across the returned weeks")


class NoShowAnalyticsResponse(BaseModel):
    user_id: str
    start: datetime
    end: datetime
    total_meetings: int = Field(..., description="Qualified, completed and no-show meetings in the window")
    total_no_shows: int
    no_show_rate: float = Field(..., description="Percentage of total_meetings, two decimals")
    by_hour: list[dict[str, Any]]
    by_industry: list[dict[str, Any]]
    by_company_size: list[dict[str, Any]]
    by_revenue: list[dict[str, Any]]
    by_reason: list[dict[str, Any]]

    @classmethod
    def from_domain(cls, analytics: NoShowAnalytics) -> "NoShowAnalyticsResponse":
        return cls(
            user_id=analytics.user_id,
            start=analytics.start,
            end=analytics.end,
            total_meetings=analytics.total_meetings,
            total_no_shows=analytics.total_no_shows,
            no_show_rate=analytics.no_show_rate,
            by_hour=analytics.by_hour,
            by_industry=analytics.by_industry,
            by_company_size=analytics.by_company_size,
            by_revenue=analytics.by_revenue,
            by_reason=analytics.by_reason,
        )
