"""
Persistence helpers for qualification rules.
"""

import psycopg

from meeting_triage.db.helpers import fetch_all
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.meeting_domain import QualificationRule

logger = get_logger(__name__)


class RuleRepository:
    """Read access to qualification_rules; the rules UI owns writes."""

    @staticmethod
    def _row_to_rule(row: dict) -> QualificationRule:
        return QualificationRule(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=row["name"],
            field=row["field"],
            operator=row["operator"],
            value=row["value"],
            priority=row["priority"],
            is_active=row["is_active"],
            action=row.get("action") or "qualify",
            custom_field=row.get("custom_field"),
        )

    @classmethod
    async def list_active(
        cls, user_id: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> list[QualificationRule]:
        """Active rules for a user in evaluation order."""
        query = """
            SELECT id, user_id, name, field, operator, value,
                   priority, is_active, action, custom_field
            FROM qualification_rules
            WHERE user_id = %s AND is_active = true
            ORDER BY priority, id
        """
        rows = await fetch_all(query, (user_id,), connection=connection)
        rules = [cls._row_to_rule(row) for row in rows]

        logger.debug("Loaded qualification rules", user_id=user_id, rule_count=len(rules))
        return rules
