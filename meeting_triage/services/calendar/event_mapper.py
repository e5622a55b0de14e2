"""
Turns Google Calendar events into raw meeting events for ingestion.

Booking forms usually write the prospect's answers into the event description
as "Question: answer" lines; those are lifted into the qualification fields so
rules have something to evaluate.
"""

import re
from typing import Any

SKIP_KEYWORDS = (
    "holiday",
    "vacation",
    "birthday",
    "reminder",
    "lunch",
    "break",
    "personal",
    "doctor",
    "dentist",
    "workout",
    "gym",
)
MEETING_KEYWORDS = (
    "meeting",
    "call",
    "demo",
    "interview",
    "presentation",
    "review",
    "standup",
    "sync",
    "catchup",
    "discussion",
    "consultation",
)

_ANSWER_LINE = re.compile(r"^\s*([^:\n]{2,80}):\s*(.+?)\s*$", re.MULTILINE)
_AMOUNT = re.compile(r"\d[\d,]*(?:\.\d+)?")
_INTEGER = re.compile(r"\d+")


def is_business_meeting(event: dict[str, Any]) -> bool:
    """Timed events with other attendees or a meeting-like title."""
    if not (event.get("start") or {}).get("dateTime") or not (event.get("end") or {}).get("dateTime"):
        return False
    if event.get("status") == "cancelled":
        return False

    title = (event.get("summary") or "").lower()
    if any(keyword in title for keyword in SKIP_KEYWORDS):
        return False

    has_attendees = len(event.get("attendees") or []) > 1
    return has_attendees or any(keyword in title for keyword in MEETING_KEYWORDS)


def to_raw_event(event: dict[str, Any]) -> dict[str, Any]:
    """Map a Calendar API event onto the raw meeting shape accepted by ingestion."""
    attendees = event.get("attendees") or []
    primary = next((a for a in attendees if not a.get("self") and a.get("email")), None)
    if primary is None and attendees:
        primary = attendees[0]
    primary = primary or {}

    raw: dict[str, Any] = {
        "external_id": event["id"],
        "title": event.get("summary") or "Untitled Meeting",
        "start": event["start"]["dateTime"],
        "end": event["end"]["dateTime"],
        "attendee_email": primary.get("email"),
        "attendee_name": primary.get("displayName"),
        "form_data": {
            "source": "google_calendar",
            "location": event.get("location"),
            "event_link": event.get("htmlLink"),
            "attendees": [
                {"email": a.get("email"), "name": a.get("displayName"), "response_status": a.get("responseStatus")}
                for a in attendees
            ],
        },
    }

    answers = parse_form_answers(event.get("description") or "")
    raw["form_data"].update(answers.pop("answers"))
    raw.update(answers)
    return raw


def parse_form_answers(description: str) -> dict[str, Any]:
    """
    Pull qualification fields out of "Question: answer" lines.

    Returns the recognised fields plus ``answers``, every line keyed by the
    lower-cased question, for ``custom`` rules.
    """
    fields: dict[str, Any] = {}
    answers: dict[str, str] = {}

    for question, answer in _ANSWER_LINE.findall(description):
        key = question.strip().lower()
        answers[key] = answer

        if "company" in key and "size" not in key:
            fields.setdefault("company", answer)
        elif "revenue" in key or "arr" in key.split():
            match = _AMOUNT.search(answer)
            if match:
                fields.setdefault("revenue", match.group(0).replace(",", ""))
        elif "company size" in key or "employees" in key:
            match = _INTEGER.search(answer.replace(",", ""))
            if match:
                fields.setdefault("company_size", int(match.group(0)))
        elif "industry" in key:
            fields.setdefault("industry", answer)
        elif "budget" in key:
            match = _AMOUNT.search(answer)
            if match:
                fields.setdefault("budget", match.group(0).replace(",", ""))

    fields["answers"] = answers
    return fields
