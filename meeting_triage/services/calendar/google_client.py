"""
Google Calendar adapter used by calendar sync and cleanup.

Only two calls are needed: list the events in a window and delete one event.
A delete of an event that is already gone reports ``"not_found"`` rather than
raising, so cleanup stays idempotent.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Literal

import httpx

from meeting_triage.config import settings
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.repositories.integration_repository import IntegrationRepository

logger = get_logger(__name__)

CALENDAR_PRIMARY = "primary"
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
RETRYABLE_STATUS_CODES = RETRY_STATUS_CODES | {401, 408}
PAGE_SIZE = 250

DeleteResult = Literal["ok", "not_found"]
TokenLookup = Callable[[str, str], Awaitable[str | None]]


class GoogleCalendarError(Exception):
    """Calendar API call failed."""

    def __init__(self, message: str, status_code: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code in RETRYABLE_STATUS_CODES


class GoogleCalendarClient:
    """
    Thin async client over the Calendar v3 REST API.

    Transport retries cover short blips (429/5xx, connection resets); anything
    still failing is raised as GoogleCalendarError for the job scheduler to
    classify and back off on.
    """

    def __init__(
        self,
        token_lookup: TokenLookup | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry_backoff: float = BACKOFF_FACTOR,
    ):
        self._token_lookup = token_lookup or IntegrationRepository.get_access_token
        self._base_url = (base_url or settings.GOOGLE_CALENDAR_API_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.PROVIDER_REQUEST_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )
        self._retry_backoff = retry_backoff

    async def close(self) -> None:
        await self._client.aclose()

    async def _headers(self, user_id: str) -> dict[str, str]:
        access_token = await self._token_lookup(user_id, "google_calendar")
        if not access_token:
            raise GoogleCalendarError("Google Calendar not connected", error_code="not_connected")
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise GoogleCalendarError(f"Calendar request failed: {e}") from e
                logger.debug("Calendar API request error, retrying", attempt=attempt, error=str(e))
            else:
                if response.status_code not in RETRY_STATUS_CODES or attempt >= MAX_RETRIES:
                    return response
                logger.debug("Calendar API retrying request", attempt=attempt, status_code=response.status_code)

            await asyncio.sleep(self._retry_backoff * (2 ** (attempt - 1)))

        raise GoogleCalendarError("Calendar API retry loop exhausted")

    def _raise_for_error(self, response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return

        try:
            error_info = (response.json() if response.text else {}).get("error", {})
        except ValueError:
            error_info = {}
        message = error_info.get("message") or f"Calendar API error (HTTP {response.status_code})"

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_message=message,
        )
        raise GoogleCalendarError(message, status_code=response.status_code, error_code=error_info.get("status"))

    async def delete_event(self, user_id: str, external_id: str) -> DeleteResult:
        """
        Delete an event from the user's primary calendar.

        Returns:
            "ok" when deleted, "not_found" when the event no longer exists

        Raises:
            GoogleCalendarError: Any other failure
        """
        url = f"{self._base_url}/calendars/{CALENDAR_PRIMARY}/events/{external_id}"
        response = await self._request_with_retry("DELETE", url, headers=await self._headers(user_id))

        # 410 Gone is what Calendar returns for an event that was already cancelled
        if response.status_code in (404, 410):
            logger.info("Calendar event already gone", user_id=user_id, external_id=external_id)
            return "not_found"

        self._raise_for_error(response, "delete_event")
        logger.info("Calendar event deleted", user_id=user_id, external_id=external_id)
        return "ok"

    async def list_events(self, user_id: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """Raw timed events in ``[start, end)``, expanded and ordered by start time."""
        url = f"{self._base_url}/calendars/{CALENDAR_PRIMARY}/events"
        headers = await self._headers(user_id)
        params: dict[str, Any] = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": PAGE_SIZE,
        }

        events: list[dict[str, Any]] = []
        while True:
            response = await self._request_with_retry("GET", url, headers=headers, params=params)
            self._raise_for_error(response, "list_events")
            data = response.json()
            events.extend(data.get("items", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.info("Calendar events listed", user_id=user_id, event_count=len(events))
        return events
