"""
Executors for scheduled jobs, one per job family.

An executor either returns (the action happened), or raises one of
TransientExecutionError, PermanentExecutionError or IdempotentSuccess for the
scheduler to act on.
"""

from collections.abc import Awaitable, Callable

from meeting_triage.errors import (
    IdempotentSuccess,
    MeetingNotFoundError,
    PermanentExecutionError,
    TransientExecutionError,
)
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.models.domain.meeting_domain import ScheduledJob
from meeting_triage.repositories.meeting_repository import MeetingRepository
from meeting_triage.repositories.user_repository import UserRepository
from meeting_triage.services.calendar.google_client import GoogleCalendarError
from meeting_triage.services.email.gmail_sender import GmailSender
from meeting_triage.services.email.templates import render
from meeting_triage.services.qualification.controller import QualificationController, qualification_controller

logger = get_logger(__name__)

# Email intents only make sense while the meeting is still in the status that created them
REQUIRED_STATUS = {
    "confirmation": "qualified",
    "reminder": "qualified",
    "followup": "completed",
    "calendar_deletion": "disqualified",
}


class EmailJobExecutor:
    """Renders and sends confirmation, reminder, follow-up and deletion-notice emails."""

    def __init__(
        self,
        meetings=MeetingRepository,
        sender: GmailSender | None = None,
        owner_email: Callable[[str], Awaitable[str | None]] | None = None,
    ):
        self._meetings = meetings
        self._sender = sender
        self._owner_email = owner_email or UserRepository.get_email

    @property
    def sender(self) -> GmailSender:
        if self._sender is None:
            self._sender = GmailSender()
        return self._sender

    async def __call__(self, job: ScheduledJob, settings: AutomationSettings) -> None:
        meeting = await self._meetings.get(job.meeting_id)
        if meeting is None:
            raise PermanentExecutionError(f"Meeting not found: {job.meeting_id}", operation="send_email")

        required = REQUIRED_STATUS[job.type]
        if meeting.status != required:
            raise IdempotentSuccess(
                f"{job.type} no longer applies, meeting is {meeting.status}", operation="send_email"
            )

        if job.type == "calendar_deletion":
            if not settings.notify_calendar_deletions:
                raise IdempotentSuccess("Deletion notices disabled", operation="send_email")
            recipient = await self._owner_email(job.user_id)
        else:
            recipient = meeting.attendee_email

        if not recipient:
            raise PermanentExecutionError(f"No recipient for {job.type} email", operation="send_email")

        logger.debug("Sending scheduled email", job_id=job.id, job_type=job.type, meeting_id=meeting.id)
        email = render(job.type, meeting)
        await self.sender.send(job.user_id, recipient, email.subject, email.body)


class CalendarCleanupExecutor:
    """Deletes a disqualified meeting's calendar event."""

    def __init__(self, controller: QualificationController | None = None):
        self.controller = controller or qualification_controller

    async def __call__(self, job: ScheduledJob, settings: AutomationSettings) -> None:
        if not settings.auto_delete_disqualified:
            raise IdempotentSuccess("Automatic calendar cleanup disabled", operation="calendar_cleanup")

        try:
            result = await self.controller.cleanup_meeting(job.meeting_id, settings)
        except MeetingNotFoundError as e:
            raise PermanentExecutionError(str(e), operation="calendar_cleanup") from e
        except GoogleCalendarError as e:
            if e.retryable:
                raise TransientExecutionError(str(e), operation="calendar_cleanup") from e
            raise PermanentExecutionError(str(e), operation="calendar_cleanup") from e

        if result != "deleted":
            raise IdempotentSuccess(f"Cleanup not needed: {result}", operation="calendar_cleanup")


def default_executors() -> dict[str, Callable[[ScheduledJob, AutomationSettings], Awaitable[None]]]:
    email = EmailJobExecutor()
    return {
        "confirmation": email,
        "reminder": email,
        "followup": email,
        "calendar_deletion": email,
        "calendar_cleanup": CalendarCleanupExecutor(),
    }
