"""
Weekly metrics rollup job.

Once a week (METRICS_ROLLUP_WEEKDAY at METRICS_ROLLUP_HOUR UTC) recompute the
week that just ended for every user with meetings. Users are independent: one
user's failure is logged and the rest continue.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from meeting_triage.config import settings
from meeting_triage.errors import ValidationError
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.repositories.meeting_repository import MeetingRepository
from meeting_triage.repositories.user_repository import UserRepository
from meeting_triage.services.metrics.metrics_aggregator import (
    WEEK,
    MetricsAggregator,
    metrics_aggregator,
    week_start_for,
)

logger = get_logger(__name__)


class MetricsRollupJob:
    def __init__(
        self,
        aggregator: MetricsAggregator | None = None,
        list_users=MeetingRepository.list_user_ids,
        settings_for=UserRepository.get_automation_settings,
    ):
        self.aggregator = aggregator or metrics_aggregator
        self._list_users = list_users
        self._settings_for = settings_for
        self.is_running = False

    async def _user_settings(self, user_id: str) -> AutomationSettings:
        try:
            return await self._settings_for(user_id)
        except ValidationError as e:
            logger.warning("Invalid automation settings, using defaults", user_id=user_id, error=str(e))
            return AutomationSettings()

    async def run_once(self, now: datetime | None = None) -> dict[str, Any]:
        """Roll up the previous full week for every user."""
        if self.is_running:
            logger.warning("Metrics rollup already running, skipping")
            return {"skipped": True}

        self.is_running = True
        now = now or datetime.now(UTC)
        week_start = week_start_for(now) - WEEK
        result: dict[str, Any] = {"week_start": week_start.isoformat(), "users": 0, "errors": []}

        try:
            for user_id in await self._list_users():
                try:
                    await self.aggregator.compute_week(user_id, week_start, await self._user_settings(user_id))
                    result["users"] += 1
                except Exception as e:
                    logger.error("Metrics rollup failed for user", user_id=user_id, error=str(e))
                    result["errors"].append({"user_id": user_id, "error": str(e)})
        finally:
            self.is_running = False

        logger.info(
            "Metrics rollup completed",
            week_start=result["week_start"],
            users=result["users"],
            errors=len(result["errors"]),
        )
        return result


metrics_rollup_job = MetricsRollupJob()


def seconds_until_next_rollup(now: datetime) -> float:
    """Seconds from ``now`` to the next configured weekday/hour (UTC)."""
    target = now.astimezone(UTC).replace(
        hour=settings.METRICS_ROLLUP_HOUR, minute=0, second=0, microsecond=0
    ) + timedelta(days=(settings.METRICS_ROLLUP_WEEKDAY - now.astimezone(UTC).weekday()) % 7)
    if target <= now:
        target += WEEK
    return (target - now).total_seconds()


async def start_metrics_rollup_scheduler() -> None:
    logger.info(
        "Starting metrics rollup scheduler",
        weekday=settings.METRICS_ROLLUP_WEEKDAY,
        hour=settings.METRICS_ROLLUP_HOUR,
    )

    while True:
        delay = seconds_until_next_rollup(datetime.now(UTC))
        logger.info("Next metrics rollup scheduled", in_seconds=round(delay))
        await asyncio.sleep(delay)
        try:
            await metrics_rollup_job.run_once()
        except Exception as e:
            logger.error("Error in metrics rollup scheduler", error=str(e), error_type=type(e).__name__)
