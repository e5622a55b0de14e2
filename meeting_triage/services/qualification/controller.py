"""
Qualification controller.

Owns the meeting status state machine:

    pending       -> qualified | disqualified | needs_review   (evaluator)
    needs_review  -> qualified | disqualified                  (resolve_review or reevaluate)
    qualified     -> completed | no_show                       (explicit marks)
    disqualified, completed, no_show are terminal; override_status is the only way out

Every change runs under the per-meeting lock inside one database transaction,
appends to status_history and enqueues its follow-up jobs on the same
connection, so the status and its jobs commit together or not at all.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from meeting_triage.db.pool import db_pool
from meeting_triage.errors import InvalidTransitionError, MeetingNotFoundError, ValidationError
from meeting_triage.infrastructure.observability.logging import get_logger, log_transition
from meeting_triage.models.api.meeting_request import RawMeetingEvent, parse_raw_event
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.models.domain.meeting_domain import (
    MEETING_STATUSES,
    DecisionSource,
    Meeting,
    QualificationRule,
    ScheduledJob,
    StatusChange,
)
from meeting_triage.repositories.job_repository import JobRepository
from meeting_triage.repositories.meeting_repository import MeetingRepository
from meeting_triage.repositories.rule_repository import RuleRepository
from meeting_triage.services.calendar.event_mapper import is_business_meeting, to_raw_event
from meeting_triage.services.calendar.google_client import GoogleCalendarClient, GoogleCalendarError
from meeting_triage.services.locks import KeyedLock, meeting_locks
from meeting_triage.services.qualification.rule_evaluator import evaluate, validate_rule

logger = get_logger(__name__)

REMINDER_LEAD = timedelta(hours=24)
FOLLOWUP_DELAY = timedelta(hours=2)
REEVALUABLE_STATUSES = ("pending", "needs_review")

CleanupResult = Literal["deleted", "not_found", "already_deleted", "not_disqualified"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QualificationController:
    """
    Applies the rule evaluator to meetings and drives their lifecycle.

    Repositories, the calendar adapter, the transaction factory and the clock
    are injectable; the defaults talk to Postgres and Google Calendar.
    """

    def __init__(
        self,
        meetings=MeetingRepository,
        rules=RuleRepository,
        jobs=JobRepository,
        calendar: GoogleCalendarClient | None = None,
        transaction: Callable[[], AbstractAsyncContextManager[Any]] | None = None,
        locks: KeyedLock = meeting_locks,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._meetings = meetings
        self._rules = rules
        self._jobs = jobs
        self._calendar = calendar
        self._transaction = transaction or db_pool.transaction
        self._locks = locks
        self._clock = clock

    @property
    def calendar(self) -> GoogleCalendarClient:
        if self._calendar is None:
            self._calendar = GoogleCalendarClient()
        return self._calendar

    # ------------------------------------------------------------------
    # Ingestion and evaluation
    # ------------------------------------------------------------------

    async def ingest_meeting(
        self, user_id: str, raw_event: dict[str, Any], settings: AutomationSettings | None = None
    ) -> Meeting:
        """
        Store a newly observed meeting (or refresh a known one) and qualify it.

        Only meetings still ``pending`` are evaluated; a meeting that already has
        a decision keeps it, so ingestion never overrides a human review.

        Raises:
            ValidationError: If the raw event is malformed
        """
        meeting, _ = await self._ingest(user_id, parse_raw_event(raw_event), settings or AutomationSettings())
        return meeting

    async def _ingest(
        self, user_id: str, event: RawMeetingEvent, settings: AutomationSettings
    ) -> tuple[Meeting, bool]:
        async with self._locks.hold(f"{user_id}:{event.external_id}"):
            async with self._transaction() as conn:
                meeting = await self._meetings.get_by_external_id(user_id, event.external_id, connection=conn)
                created = meeting is None

                if created:
                    meeting = await self._meetings.insert(
                        Meeting(id="", user_id=user_id, **_event_fields(event)), connection=conn
                    )
                else:
                    previous_start = meeting.start
                    for name, value in _event_fields(event).items():
                        setattr(meeting, name, value)
                    if meeting.start != previous_start and meeting.status == "qualified":
                        await self._move_reminder(meeting, conn)

                if meeting.status == "pending":
                    await self._apply_evaluation(meeting, settings, conn)
                else:
                    logger.debug(
                        "Meeting already decided, refreshing details only",
                        meeting_id=meeting.id,
                        status=meeting.status,
                    )

                await self._meetings.update(meeting, connection=conn)

        logger.info(
            "Meeting ingested",
            meeting_id=meeting.id,
            user_id=user_id,
            created=created,
            status=meeting.status,
        )
        return meeting, created

    async def reevaluate(self, meeting_id: str, settings: AutomationSettings | None = None) -> Meeting:
        """
        Run the rules again on a ``pending`` or ``needs_review`` meeting.

        Raises:
            MeetingNotFoundError: Unknown meeting id
            InvalidTransitionError: The meeting already has a final decision
        """
        settings = settings or AutomationSettings()
        async with self._locks.hold(meeting_id):
            async with self._transaction() as conn:
                meeting = await self._load(meeting_id, conn)
                if meeting.status not in REEVALUABLE_STATUSES:
                    raise InvalidTransitionError(meeting_id, meeting.status, "reevaluation")

                await self._apply_evaluation(meeting, settings, conn)
                await self._meetings.update(meeting, connection=conn)

        return meeting

    async def _move_reminder(self, meeting: Meeting, conn) -> None:
        """Follow a start-time change with the pending reminder, or queue one for the new time."""
        now = self._clock()
        reminder_at = meeting.start - REMINDER_LEAD
        moved = await self._jobs.reschedule_pending(
            meeting.id, "reminder", max(reminder_at, now), connection=conn
        )
        if not moved and reminder_at > now and meeting.attendee_email:
            await self._jobs.enqueue(
                ScheduledJob(
                    id=None,
                    user_id=meeting.user_id,
                    meeting_id=meeting.id,
                    type="reminder",
                    scheduled_at=reminder_at,
                ),
                connection=conn,
            )
        logger.info("Meeting start changed", meeting_id=meeting.id, start=meeting.start.isoformat(), moved=moved)

    async def _apply_evaluation(self, meeting: Meeting, settings: AutomationSettings, conn) -> None:
        now = self._clock()
        rules = await self._load_rules(meeting.user_id, conn)
        verdict = evaluate(meeting, rules)

        meeting.qualification_reason = verdict.reason
        meeting.last_processed = max(now, meeting.last_processed) if meeting.last_processed else now

        logger.info(
            "Meeting evaluated",
            meeting_id=meeting.id,
            outcome=verdict.outcome,
            matched_rule_id=verdict.matched_rule.id if verdict.matched_rule else None,
            reason=verdict.reason,
        )

        if verdict.outcome != meeting.status:
            self._transition(meeting, verdict.outcome, "auto", verdict.reason, now)
            await self._enqueue_side_effects(meeting, settings, now, conn)

    async def _load_rules(self, user_id: str, conn) -> list[QualificationRule]:
        rules = []
        for rule in await self._rules.list_active(user_id, connection=conn):
            try:
                rules.append(validate_rule(rule))
            except ValidationError as e:
                logger.warning("Skipping malformed qualification rule", rule_id=rule.id, error=str(e))
        return rules

    # ------------------------------------------------------------------
    # Explicit transitions
    # ------------------------------------------------------------------

    async def resolve_review(
        self,
        meeting_id: str,
        outcome: str,
        reason: str | None = None,
        settings: AutomationSettings | None = None,
    ) -> Meeting:
        """Record a human decision on a meeting awaiting review."""
        if outcome not in ("qualified", "disqualified"):
            raise ValidationError(f"Review outcome must be qualified or disqualified, got {outcome!r}", field="outcome")

        return await self._explicit_transition(
            meeting_id,
            outcome,
            allowed_from=("needs_review",),
            reason=reason or f"Manually {outcome} after review",
            settings=settings,
        )

    async def mark_completed(self, meeting_id: str, settings: AutomationSettings | None = None) -> Meeting:
        return await self._explicit_transition(
            meeting_id, "completed", allowed_from=("qualified",), reason=None, settings=settings
        )

    async def mark_no_show(self, meeting_id: str, reason: str = "did_not_attend") -> Meeting:
        return await self._explicit_transition(
            meeting_id, "no_show", allowed_from=("qualified",), reason=reason, settings=None
        )

    async def override_status(
        self,
        meeting_id: str,
        status: str,
        reason: str | None = None,
        settings: AutomationSettings | None = None,
    ) -> Meeting:
        """Move a meeting to any status; the only way out of a terminal status."""
        if status not in MEETING_STATUSES:
            raise ValidationError(f"Unknown meeting status: {status!r}", field="status")

        return await self._explicit_transition(
            meeting_id,
            status,
            allowed_from=MEETING_STATUSES,
            reason=reason or f"Status overridden to {status}",
            settings=settings,
        )

    async def _explicit_transition(
        self,
        meeting_id: str,
        to_status: str,
        allowed_from: tuple[str, ...],
        reason: str | None,
        settings: AutomationSettings | None,
    ) -> Meeting:
        settings = settings or AutomationSettings()
        async with self._locks.hold(meeting_id):
            async with self._transaction() as conn:
                meeting = await self._load(meeting_id, conn)
                if meeting.status not in allowed_from or meeting.status == to_status:
                    raise InvalidTransitionError(meeting_id, meeting.status, to_status)

                now = self._clock()
                if to_status == "no_show":
                    meeting.no_show_reason = reason
                    meeting.no_show_marked_at = now
                elif meeting.status == "no_show":
                    meeting.no_show_reason = None
                    meeting.no_show_marked_at = None

                if to_status in ("qualified", "disqualified"):
                    meeting.qualification_reason = reason

                self._transition(meeting, to_status, "manual", reason, now)
                await self._enqueue_side_effects(meeting, settings, now, conn)
                await self._meetings.update(meeting, connection=conn)

        return meeting

    def _transition(
        self, meeting: Meeting, to_status: str, source: DecisionSource, reason: str | None, now: datetime
    ) -> None:
        from_status = meeting.status
        meeting.status = to_status
        meeting.status_history.append(StatusChange(status=to_status, source=source, at=now, reason=reason))
        log_transition(meeting.id, meeting.user_id, from_status, to_status, source)

    async def _enqueue_side_effects(
        self, meeting: Meeting, settings: AutomationSettings, now: datetime, conn
    ) -> list[ScheduledJob]:
        intents: list[tuple[str, datetime]] = []

        if meeting.status == "qualified" and meeting.attendee_email:
            intents.append(("confirmation", now))
            reminder_at = meeting.start - REMINDER_LEAD
            if reminder_at > now:
                intents.append(("reminder", reminder_at))
        elif meeting.status == "completed" and meeting.attendee_email:
            intents.append(("followup", max(now, meeting.end + FOLLOWUP_DELAY)))
        elif meeting.status == "disqualified" and settings.auto_delete_disqualified and not meeting.calendar_deleted:
            intents.append(("calendar_cleanup", now + timedelta(minutes=settings.cleanup_delay_minutes)))

        jobs = []
        for job_type, scheduled_at in intents:
            job = ScheduledJob(
                id=None,
                user_id=meeting.user_id,
                meeting_id=meeting.id,
                type=job_type,
                scheduled_at=scheduled_at,
            )
            jobs.append(await self._jobs.enqueue(job, connection=conn))
        return jobs

    async def get_meeting(self, meeting_id: str, user_id: str | None = None) -> Meeting:
        """Load a meeting, optionally checking it belongs to ``user_id``."""
        meeting = await self._meetings.get(meeting_id)
        if meeting is None or (user_id is not None and meeting.user_id != user_id):
            raise MeetingNotFoundError(meeting_id)
        return meeting

    async def _load(self, meeting_id: str, conn) -> Meeting:
        meeting = await self._meetings.get_for_update(meeting_id, connection=conn)
        if meeting is None:
            raise MeetingNotFoundError(meeting_id)
        return meeting

    # ------------------------------------------------------------------
    # Calendar cleanup
    # ------------------------------------------------------------------

    async def cleanup_meeting(
        self, meeting_id: str, settings: AutomationSettings | None = None
    ) -> CleanupResult:
        """
        Remove a disqualified meeting's event from the provider calendar.

        The row lock is held across the provider call so a concurrent override
        cannot slip in between the status check and the delete.

        Raises:
            MeetingNotFoundError: Unknown meeting id
            GoogleCalendarError: Provider call failed
        """
        settings = settings or AutomationSettings()
        async with self._locks.hold(meeting_id):
            async with self._transaction() as conn:
                meeting = await self._load(meeting_id, conn)
                if meeting.status != "disqualified":
                    logger.info("Cleanup skipped, meeting no longer disqualified", meeting_id=meeting_id)
                    return "not_disqualified"
                if meeting.calendar_deleted:
                    return "already_deleted"

                result = await self.calendar.delete_event(meeting.user_id, meeting.external_id)

                now = self._clock()
                meeting.calendar_deleted = True
                meeting.calendar_deleted_at = now
                await self._meetings.update(meeting, connection=conn)

                if result == "ok" and settings.notify_calendar_deletions:
                    await self._jobs.enqueue(
                        ScheduledJob(
                            id=None,
                            user_id=meeting.user_id,
                            meeting_id=meeting.id,
                            type="calendar_deletion",
                            scheduled_at=now,
                        ),
                        connection=conn,
                    )

        logger.info("Meeting removed from calendar", meeting_id=meeting_id, provider_result=result)
        return "deleted" if result == "ok" else "not_found"

    async def run_cleanup_now(self, user_id: str, settings: AutomationSettings | None = None) -> dict[str, Any]:
        """
        Clean up every disqualified meeting still on the user's calendar.

        Returns:
            dict: ``deleted`` (meetings now off the calendar) and per-meeting ``errors``
        """
        deleted = 0
        errors: list[str] = []

        for meeting in await self._meetings.list_pending_cleanup(user_id):
            try:
                result = await self.cleanup_meeting(meeting.id, settings)
            except GoogleCalendarError as e:
                logger.error("Calendar cleanup failed", meeting_id=meeting.id, error=str(e))
                errors.append(f"{meeting.title}: {e}")
                continue
            if result in ("deleted", "not_found"):
                deleted += 1

        logger.info("Manual calendar cleanup finished", user_id=user_id, deleted=deleted, errors=len(errors))
        return {"deleted": deleted, "errors": errors}

    async def cleanup_stats(self, user_id: str) -> dict[str, int]:
        return await self._meetings.cleanup_stats(user_id)

    # ------------------------------------------------------------------
    # Calendar sync
    # ------------------------------------------------------------------

    async def sync_calendar(
        self,
        user_id: str,
        settings: AutomationSettings | None = None,
        days_back: int = 1,
        days_ahead: int = 30,
    ) -> dict[str, Any]:
        """Ingest every business meeting in the provider window around now."""
        settings = settings or AutomationSettings()
        now = self._clock()
        events = await self.calendar.list_events(
            user_id, now - timedelta(days=days_back), now + timedelta(days=days_ahead)
        )

        stats: dict[str, Any] = {"imported": 0, "processed": 0, "skipped": 0, "errors": []}
        for event in events:
            if not is_business_meeting(event):
                stats["skipped"] += 1
                continue
            try:
                _, created = await self._ingest(user_id, parse_raw_event(to_raw_event(event)), settings)
            except ValidationError as e:
                logger.warning("Skipping malformed calendar event", event_id=event.get("id"), error=str(e))
                stats["errors"].append(f"{event.get('id')}: {e}")
                continue
            stats["imported" if created else "processed"] += 1

        logger.info(
            "Calendar sync completed",
            user_id=user_id,
            imported=stats["imported"],
            processed=stats["processed"],
            skipped=stats["skipped"],
        )
        return stats


def _event_fields(event: RawMeetingEvent) -> dict[str, Any]:
    return {
        "external_id": event.external_id,
        "title": event.title,
        "start": event.start,
        "end": event.end,
        "attendee_email": event.attendee_email,
        "attendee_name": event.attendee_name,
        "company": event.company,
        "revenue": event.revenue,
        "company_size": event.company_size,
        "industry": event.industry,
        "budget": event.budget,
        "form_data": dict(event.form_data),
    }


qualification_controller = QualificationController()


def get_qualification_controller() -> QualificationController:
    return qualification_controller
