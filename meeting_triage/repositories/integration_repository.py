"""
Read access to provider credentials.

Token exchange and refresh live in the account service; this engine only reads
the current access token for the provider it is about to call.
"""

from meeting_triage.db.helpers import fetch_val

IntegrationType = str  # "google_calendar" | "gmail"


class IntegrationRepository:
    @classmethod
    async def get_access_token(cls, user_id: str, integration_type: IntegrationType) -> str | None:
        query = """
            SELECT access_token
            FROM integrations
            WHERE user_id = %s AND type = %s AND is_active = true
            ORDER BY created_at DESC
            LIMIT 1
        """
        return await fetch_val(query, (user_id, integration_type))
