"""
Metrics API Routes
Weekly grooming-efficiency rollups and no-show analytics per user.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from meeting_triage.models.api.meeting_response import (
    NoShowAnalyticsResponse,
    WeeklyMetricsListResponse,
    WeeklyMetricsResponse,
)
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.routes.meetings import user_settings
from meeting_triage.services.metrics.metrics_aggregator import MetricsAggregator, get_metrics_aggregator

router = APIRouter(prefix="/users/{user_id}/metrics", tags=["metrics"])

SUMMED_FIELDS = (
    "total_meetings",
    "auto_qualified",
    "auto_disqualified",
    "manual_review",
    "time_spent_grooming_minutes",
    "time_saved_minutes",
)


@router.get("/weekly", response_model=WeeklyMetricsListResponse)
async def get_weekly_metrics(
    user_id: str,
    weeks: int = Query(4, description="Number of weeks to return, current week included"),
    settings: AutomationSettings = Depends(user_settings),
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
):
    """Weekly metrics oldest first, recomputed from the user's meetings."""
    rollups = await aggregator.get_weekly_metrics(user_id, weeks, settings)
    totals = {name: sum(getattr(week, name) for week in rollups) for name in SUMMED_FIELDS}
    return WeeklyMetricsListResponse(
        user_id=user_id,
        weeks=[WeeklyMetricsResponse.from_domain(week) for week in rollups],
        totals=totals,
    )


@router.get("/no-shows", response_model=NoShowAnalyticsResponse)
async def get_no_show_analytics(
    user_id: str,
    start: datetime | None = Query(None, description="Window start (meeting start time); defaults to 90 days ago"),
    end: datetime | None = Query(None, description="Window end; defaults to now"),
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
):
    analytics = await aggregator.no_show_analytics(user_id, start, end)
    return NoShowAnalyticsResponse.from_domain(analytics)
