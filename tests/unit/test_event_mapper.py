"""
Tests for mapping Google Calendar events onto raw meeting events.
"""

from meeting_triage.models.api.meeting_request import parse_raw_event
from meeting_triage.services.calendar.event_mapper import is_business_meeting, parse_form_answers, to_raw_event

BOOKED_EVENT = {
    "id": "evt-42",
    "status": "confirmed",
    "summary": "Intro call: Globex",
    "description": "Company: Globex\nAnnual revenue: $2,400,000\nCompany size: 1,200 employees\nIndustry: Energy\nUse case: Forecasting",
    "start": {"dateTime": "2024-03-06T15:00:00Z"},
    "end": {"dateTime": "2024-03-06T15:45:00Z"},
    "htmlLink": "https://calendar.google.com/event?eid=evt-42",
    "attendees": [
        {"email": "owner@corp.test", "self": True, "responseStatus": "accepted"},
        {"email": "hank@globex.test", "displayName": "Hank", "responseStatus": "needsAction"},
    ],
}


def test_business_meeting_detection():
    assert is_business_meeting(BOOKED_EVENT) is True
    assert is_business_meeting({**BOOKED_EVENT, "status": "cancelled"}) is False
    assert is_business_meeting({**BOOKED_EVENT, "summary": "Dentist"}) is False
    assert is_business_meeting({**BOOKED_EVENT, "start": {"date": "2024-03-06"}}) is False
    assert is_business_meeting({**BOOKED_EVENT, "summary": "Focus time", "attendees": []}) is False
    assert is_business_meeting({**BOOKED_EVENT, "summary": "Pricing demo", "attendees": []}) is True


def test_form_answers_fill_qualification_fields():
    fields = parse_form_answers(BOOKED_EVENT["description"])

    assert fields["company"] == "Globex"
    assert fields["revenue"] == "2400000"
    assert fields["company_size"] == 1200
    assert fields["industry"] == "Energy"
    assert fields["answers"]["use case"] == "Forecasting"


def test_to_raw_event_is_accepted_by_ingestion():
    raw = to_raw_event(BOOKED_EVENT)

    assert raw["attendee_email"] == "hank@globex.test"
    assert raw["attendee_name"] == "Hank"
    assert raw["form_data"]["source"] == "google_calendar"
    assert raw["form_data"]["use case"] == "Forecasting"

    event = parse_raw_event(raw)
    assert event.external_id == "evt-42"
    assert str(event.revenue) == "2400000"
    assert event.company_size == 1200
    assert (event.end - event.start).total_seconds() == 45 * 60


def test_event_without_description_has_no_fields():
    raw = to_raw_event({**BOOKED_EVENT, "description": None})

    assert "revenue" not in raw
    assert raw["form_data"]["attendees"][1]["email"] == "hank@globex.test"
