"""
Domain models for meeting triage.

Lightweight dataclasses shared by the evaluator, controller, scheduler,
aggregator and repositories. Business rules live in the services; the only
logic here is derived-state helpers that several services need.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

MeetingStatus = Literal["pending", "qualified", "disqualified", "needs_review", "no_show", "completed"]
RuleField = Literal["revenue", "company_size", "industry", "budget", "custom"]
RuleOperator = Literal["gte", "lte", "eq", "ne", "contains", "not_contains"]
RuleAction = Literal["qualify", "disqualify", "review"]
VerdictOutcome = Literal["qualified", "disqualified", "needs_review"]
DecisionSource = Literal["auto", "manual"]
JobType = Literal["confirmation", "reminder", "followup", "calendar_deletion", "calendar_cleanup"]
JobStatus = Literal["pending", "in_progress", "sent", "failed"]

MEETING_STATUSES: tuple[str, ...] = (
    "pending",
    "qualified",
    "disqualified",
    "needs_review",
    "no_show",
    "completed",
)
RULE_FIELDS: tuple[str, ...] = ("revenue", "company_size", "industry", "budget", "custom")
RULE_OPERATORS: tuple[str, ...] = ("gte", "lte", "eq", "ne", "contains", "not_contains")
RULE_ACTIONS: tuple[str, ...] = ("qualify", "disqualify", "review")
LIVE_JOB_STATUSES: tuple[str, ...] = ("pending", "in_progress")
POST_MEETING_STATUSES: tuple[str, ...] = ("completed", "no_show")

ACTION_OUTCOMES: dict[str, str] = {
    "qualify": "qualified",
    "disqualify": "disqualified",
    "review": "needs_review",
}


@dataclass(slots=True, frozen=True)
class QualificationRule:
    """A single user-defined qualification rule."""

    id: str
    user_id: str
    name: str
    field: RuleField
    operator: RuleOperator
    value: str
    priority: int = 0
    is_active: bool = True
    action: RuleAction = "qualify"
    custom_field: str | None = None

    def sort_key(self) -> tuple[int, str]:
        return (self.priority or 0, str(self.id))


@dataclass(slots=True, frozen=True)
class StatusChange:
    """One entry in a meeting's status history."""

    status: MeetingStatus
    source: DecisionSource
    at: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "source": self.source,
            "at": self.at.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusChange":
        at = data["at"]
        if isinstance(at, str):
            at = datetime.fromisoformat(at)
        return cls(status=data["status"], source=data["source"], at=at, reason=data.get("reason"))


@dataclass(slots=True)
class Meeting:
    """A scheduled sales meeting observed on the user's calendar."""

    id: str
    user_id: str
    external_id: str
    title: str
    start: datetime
    end: datetime
    attendee_email: str | None = None
    attendee_name: str | None = None
    company: str | None = None
    revenue: Decimal | None = None
    company_size: int | None = None
    industry: str | None = None
    budget: Decimal | None = None
    form_data: dict[str, Any] = field(default_factory=dict)
    status: MeetingStatus = "pending"
    qualification_reason: str | None = None
    no_show_reason: str | None = None
    no_show_marked_at: datetime | None = None
    last_processed: datetime | None = None
    status_history: list[StatusChange] = field(default_factory=list)
    calendar_deleted: bool = False
    calendar_deleted_at: datetime | None = None
    created_at: datetime | None = None

    def copy(self) -> "Meeting":
        return replace(self, form_data=dict(self.form_data), status_history=list(self.status_history))

    def visited(self, status: str) -> bool:
        """True when the meeting has ever been in ``status``."""
        return any(change.status == status for change in self.status_history)

    def had_manual_decision(self) -> bool:
        """
        True when a human reviewed or overrode the qualification decision.

        Marking a meeting completed or no-show is bookkeeping, not a decision.
        """
        return self.visited("needs_review") or any(
            change.source == "manual" and change.status not in POST_MEETING_STATUSES
            for change in self.status_history
        )

    def qualification_decision(self) -> str | None:
        """The latest qualified/disqualified decision recorded in history."""
        for change in reversed(self.status_history):
            if change.status in ("qualified", "disqualified"):
                return change.status
        if self.status in POST_MEETING_STATUSES:
            return "qualified"
        return self.status if self.status in ("qualified", "disqualified") else None


@dataclass(slots=True, frozen=True)
class Verdict:
    """Result of evaluating a meeting against a rule set."""

    outcome: VerdictOutcome
    reason: str
    matched_rule: QualificationRule | None = None


@dataclass(slots=True)
class ScheduledJob:
    """A time-triggered action: an email send or a calendar cleanup."""

    id: str | None
    user_id: str
    meeting_id: str
    type: JobType
    scheduled_at: datetime
    status: JobStatus = "pending"
    sent_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def dedupe_key(self) -> str:
        """Unique among live jobs; a finished job never blocks a new one of the same type."""
        return f"{self.meeting_id}:{self.type}"

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_JOB_STATUSES

    def copy(self) -> "ScheduledJob":
        return replace(self)


@dataclass(slots=True, frozen=True)
class WeeklyMetrics:
    """Materialised weekly grooming-efficiency rollup for one user."""

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

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "week_start": self.week_start.isoformat(),
            "week_end": self.week_end.isoformat(),
            "total_meetings": self.total_meetings,
            "auto_qualified": self.auto_qualified,
            "auto_disqualified": self.auto_disqualified,
            "manual_review": self.manual_review,
            "time_spent_grooming_minutes": self.time_spent_grooming_minutes,
            "time_saved_minutes": self.time_saved_minutes,
            "automation_accuracy": self.automation_accuracy,
        }


@dataclass(slots=True, frozen=True)
class NoShowAnalytics:
    """No-show rate and breakdowns over a window of meeting start times."""

    user_id: str
    start: datetime
    end: datetime
    total_meetings: int
    total_no_shows: int
    no_show_rate: float
    by_hour: list[dict[str, Any]] = field(default_factory=list)
    by_industry: list[dict[str, Any]] = field(default_factory=list)
    by_company_size: list[dict[str, Any]] = field(default_factory=list)
    by_revenue: list[dict[str, Any]] = field(default_factory=list)
    by_reason: list[dict[str, Any]] = field(default_factory=list)
