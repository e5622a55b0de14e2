"""
Gmail-backed email sender for scheduled confirmation, reminder, follow-up and
deletion-notice emails.

Failures are classified here, where the HTTP status is known, so the job
scheduler only has to distinguish transient from permanent.
"""

import base64
from collections.abc import Awaitable, Callable
from email.mime.text import MIMEText
from typing import Any

import httpx

from meeting_triage.config import settings
from meeting_triage.errors import PermanentExecutionError, TransientExecutionError
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.repositories.integration_repository import IntegrationRepository

logger = get_logger(__name__)

GMAIL_USER_ID = "me"
TRANSIENT_STATUS_CODES = {401, 408, 429}

TokenLookup = Callable[[str, str], Awaitable[str | None]]


class GmailSender:
    """Sends plain-text mail through the user's connected Gmail account."""

    def __init__(
        self,
        token_lookup: TokenLookup | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._token_lookup = token_lookup or IntegrationRepository.get_access_token
        self._base_url = (base_url or settings.GMAIL_API_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(settings.PROVIDER_REQUEST_TIMEOUT))

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def build_raw_message(to: str, subject: str, body: str) -> str:
        msg = MIMEText(body, "plain", "utf-8")
        msg["To"] = to
        msg["Subject"] = subject
        return base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")

    async def send(self, user_id: str, to: str, subject: str, body: str) -> dict[str, Any]:
        """
        Send one message.

        Returns:
            dict: Gmail's response (message id and thread id)

        Raises:
            TransientExecutionError: Network error, throttling, 5xx or an expired token
            PermanentExecutionError: No Gmail connection, or Gmail rejected the message
        """
        access_token = await self._token_lookup(user_id, "gmail")
        if not access_token:
            raise PermanentExecutionError("Gmail not connected", operation="send_email")

        url = f"{self._base_url}/users/{GMAIL_USER_ID}/messages/send"
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

        logger.info("Sending Gmail message", user_id=user_id, subject=subject)

        try:
            response = await self._client.post(
                url, headers=headers, json={"raw": self.build_raw_message(to, subject, body)}
            )
        except httpx.RequestError as e:
            raise TransientExecutionError(f"Gmail request failed: {e}", operation="send_email") from e

        if response.is_success:
            data = response.json() if response.text else {}
            logger.info("Message sent successfully", user_id=user_id, message_id=data.get("id"))
            return data

        try:
            message = (response.json() if response.text else {}).get("error", {}).get("message")
        except ValueError:
            message = None
        error = f"Gmail send failed (HTTP {response.status_code}): {message or 'unknown error'}"

        if response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500:
            raise TransientExecutionError(error, operation="send_email")
        raise PermanentExecutionError(error, operation="send_email")
