import json
import re
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio

from meeting_triage.errors import PermanentExecutionError, TransientExecutionError
from meeting_triage.services.calendar.google_client import GoogleCalendarClient, GoogleCalendarError
from meeting_triage.services.email.gmail_sender import GmailSender

CALENDAR_URL = "https://calendar.test/v3"
GMAIL_URL = "https://gmail.test/v1"
EVENTS = re.compile(r"https://calendar\.test/v3/calendars/primary/events\?.*")


async def _token(user_id, integration_type):
    return f"token-{integration_type}"


async def _no_token(user_id, integration_type):
    return None


@pytest_asyncio.fixture
async def calendar():
    client = GoogleCalendarClient(token_lookup=_token, base_url=CALENDAR_URL, retry_backoff=0)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def gmail():
    sender = GmailSender(token_lookup=_token, base_url=GMAIL_URL)
    yield sender
    await sender.close()


@pytest.mark.asyncio
async def test_delete_event_success(httpx_mock, calendar):
    httpx_mock.add_response(method="DELETE", url=f"{CALENDAR_URL}/calendars/primary/events/evt-1", status_code=204)

    assert await calendar.delete_event("user-1", "evt-1") == "ok"

    request = httpx_mock.get_requests()[0]
    assert request.headers["Authorization"] == "Bearer token-google_calendar"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [404, 410])
async def test_delete_missing_event_is_not_found(httpx_mock, calendar, status_code):
    httpx_mock.add_response(
        method="DELETE", url=f"{CALENDAR_URL}/calendars/primary/events/evt-1", status_code=status_code
    )

    assert await calendar.delete_event("user-1", "evt-1") == "not_found"


@pytest.mark.asyncio
async def test_delete_event_retries_server_errors(httpx_mock, calendar):
    url = f"{CALENDAR_URL}/calendars/primary/events/evt-1"
    httpx_mock.add_response(method="DELETE", url=url, status_code=503)
    httpx_mock.add_response(method="DELETE", url=url, status_code=204)

    assert await calendar.delete_event("user-1", "evt-1") == "ok"
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_delete_event_forbidden_is_not_retryable(httpx_mock, calendar):
    httpx_mock.add_response(
        method="DELETE",
        url=f"{CALENDAR_URL}/calendars/primary/events/evt-1",
        status_code=403,
        json={"error": {"code": 403, "message": "Forbidden", "status": "PERMISSION_DENIED"}},
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await calendar.delete_event("user-1", "evt-1")

    assert exc.value.status_code == 403
    assert exc.value.retryable is False
    assert str(exc.value) == "Forbidden"


@pytest.mark.asyncio
async def test_calendar_not_connected():
    client = GoogleCalendarClient(token_lookup=_no_token, base_url=CALENDAR_URL)

    with pytest.raises(GoogleCalendarError) as exc:
        await client.delete_event("user-1", "evt-1")
    await client.close()

    assert exc.value.error_code == "not_connected"


@pytest.mark.asyncio
async def test_list_events_follows_pages(httpx_mock, calendar):
    httpx_mock.add_response(
        method="GET",
        url=EVENTS,
        json={"items": [{"id": "evt-1"}], "nextPageToken": "page-2"},
    )
    httpx_mock.add_response(method="GET", url=EVENTS, json={"items": [{"id": "evt-2"}]})

    events = await calendar.list_events(
        "user-1", datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 3, 31, tzinfo=UTC)
    )

    assert [e["id"] for e in events] == ["evt-1", "evt-2"]
    first, second = httpx_mock.get_requests()
    assert first.url.params["singleEvents"] == "true"
    assert "pageToken" not in first.url.params
    assert second.url.params["pageToken"] == "page-2"


@pytest.mark.asyncio
async def test_gmail_send_builds_raw_message(httpx_mock, gmail):
    httpx_mock.add_response(
        method="POST",
        url=f"{GMAIL_URL}/users/me/messages/send",
        json={"id": "msg-1", "threadId": "thread-1"},
    )

    result = await gmail.send("user-1", "lead@acme.test", "Hello", "Body text")

    assert result["id"] == "msg-1"
    payload = json.loads(httpx_mock.get_requests()[0].content)
    assert payload["raw"] == GmailSender.build_raw_message("lead@acme.test", "Hello", "Body text")


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 429, 500, 503])
async def test_gmail_transient_statuses(httpx_mock, gmail, status_code):
    httpx_mock.add_response(method="POST", url=f"{GMAIL_URL}/users/me/messages/send", status_code=status_code)

    with pytest.raises(TransientExecutionError):
        await gmail.send("user-1", "lead@acme.test", "Hello", "Body")


@pytest.mark.asyncio
async def test_gmail_rejected_message_is_permanent(httpx_mock, gmail):
    httpx_mock.add_response(
        method="POST",
        url=f"{GMAIL_URL}/users/me/messages/send",
        status_code=400,
        json={"error": {"code": 400, "message": "Invalid To header"}},
    )

    with pytest.raises(PermanentExecutionError) as exc:
        await gmail.send("user-1", "not-an-address", "Hello", "Body")

    assert "Invalid To header" in str(exc.value)


@pytest.mark.asyncio
async def test_gmail_network_error_is_transient(httpx_mock, gmail):
    httpx_mock.add_exception(httpx.ConnectError("connection refused"))

    with pytest.raises(TransientExecutionError):
        await gmail.send("user-1", "lead@acme.test", "Hello", "Body")


@pytest.mark.asyncio
async def test_gmail_not_connected_is_permanent():
    sender = GmailSender(token_lookup=_no_token, base_url=GMAIL_URL)

    with pytest.raises(PermanentExecutionError):
        await sender.send("user-1", "lead@acme.test", "Hello", "Body")
    await sender.close()
