"""
Plain-text bodies for the scheduled emails.

Confirmation, reminder and follow-up go to the attendee; the calendar deletion
notice goes to the account owner.
"""

from dataclasses import dataclass

from meeting_triage.models.domain.meeting_domain import Meeting

SIGNATURE = "Best regards,\nThe Sales Team"


@dataclass(slots=True, frozen=True)
class RenderedEmail:
    subject: str
    body: str


def _greeting(meeting: Meeting) -> str:
    return f"Hi {meeting.attendee_name or 'there'},"


def _when(meeting: Meeting) -> str:
    return meeting.start.strftime("%A, %B %d at %H:%M %Z").strip()


def render_confirmation(meeting: Meeting) -> RenderedEmail:
    duration = int((meeting.end - meeting.start).total_seconds() // 60)
    details = [meeting.title, f"When: {_when(meeting)}", f"Duration: {duration} minutes"]
    if meeting.company:
        details.append(f"Company: {meeting.company}")

    body = "\n\n".join(
        [
            _greeting(meeting),
            "Thank you for scheduling time with us! This email confirms your upcoming meeting.",
            "\n".join(details),
            "What to prepare:\n"
            "- Current challenges you're facing\n"
            "- Goals and objectives for this quarter\n"
            "- Any specific questions about our solution",
            "If you need to reschedule or have any questions, please don't hesitate to reach out.",
            SIGNATURE,
        ]
    )
    return RenderedEmail("Meeting Confirmation - Looking Forward to Our Discussion", body)


def render_reminder(meeting: Meeting) -> RenderedEmail:
    details = [meeting.title, f"When: {_when(meeting)}"]
    if meeting.company:
        details.append(f"Company: {meeting.company}")

    body = "\n\n".join(
        [
            _greeting(meeting),
            "This is a friendly reminder about our meeting tomorrow:",
            "\n".join(details),
            "See you tomorrow!",
            SIGNATURE,
        ]
    )
    return RenderedEmail("Meeting Reminder - Tomorrow's Discussion", body)


def render_followup(meeting: Meeting) -> RenderedEmail:
    about = f" about {meeting.company}" if meeting.company else ""
    body = "\n\n".join(
        [
            _greeting(meeting),
            f"Thank you for taking the time to meet with us. It was great learning more{about} and your goals.",
            "Next steps:\n"
            "- We'll prepare a custom proposal based on our discussion\n"
            "- You'll receive it within 2-3 business days\n"
            "- We'll schedule a follow-up to review the proposal",
            "In the meantime, if you have any questions, please don't hesitate to reach out.",
            SIGNATURE,
        ]
    )
    return RenderedEmail("Thank You - Next Steps Following Our Meeting", body)


def render_calendar_deletion(meeting: Meeting) -> RenderedEmail:
    attendee = meeting.attendee_email or "unknown attendee"
    body = "\n\n".join(
        [
            "A disqualified meeting was removed from your calendar.",
            f"{meeting.title}\nWhen: {_when(meeting)}\nAttendee: {attendee}",
            f"Reason: {meeting.qualification_reason or 'Did not meet qualification rules'}",
            "You can turn these notices off in your calendar cleanup settings.",
        ]
    )
    return RenderedEmail(f"Calendar Cleanup - Removed \"{meeting.title}\"", body)


RENDERERS = {
    "confirmation": render_confirmation,
    "reminder": render_reminder,
    "followup": render_followup,
    "calendar_deletion": render_calendar_deletion,
}


def render(job_type: str, meeting: Meeting) -> RenderedEmail:
    return RENDERERS[job_type](meeting)
