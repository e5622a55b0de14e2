"""
Read/write access to the parts of the users table this engine owns:
the account email (deletion notices go to the owner) and the automation
settings blob stored under users.settings -> 'automation'.
"""

from psycopg.types.json import Jsonb

from meeting_triage.db.helpers import execute_query, fetch_val
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.automation_settings import AutomationSettings

logger = get_logger(__name__)


class UserRepository:
    @classmethod
    async def get_email(cls, user_id: str) -> str | None:
        return await fetch_val("SELECT email FROM users WHERE id = %s", (user_id,))

    @classmethod
    async def get_automation_settings(cls, user_id: str) -> AutomationSettings:
        """
        Load and validate a user's automation settings; no blob means defaults.

        Raises:
            ValidationError: If the stored blob is malformed
        """
        blob = await fetch_val("SELECT settings -> 'automation' FROM users WHERE id = %s", (user_id,))
        return AutomationSettings.from_blob(blob)

    @classmethod
    async def save_automation_settings(cls, user_id: str, automation: AutomationSettings) -> None:
        query = """
            UPDATE users
            SET settings = jsonb_set(COALESCE(settings, '{}'::jsonb), '{automation}', %s),
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (Jsonb(automation.to_blob()), user_id))
        logger.info("Automation settings saved", user_id=user_id)
