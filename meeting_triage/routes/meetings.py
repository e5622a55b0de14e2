"""
Meeting API Routes
Thin HTTP layer over the qualification controller and job scheduler.

Domain errors propagate to the exception handlers registered in main.py;
only provider failures are translated here.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from meeting_triage.errors import ValidationError
from meeting_triage.infrastructure.observability.logging import get_logger
from meeting_triage.models.api.meeting_request import (
    NoShowRequest,
    OverrideStatusRequest,
    ResolveReviewRequest,
    SyncCalendarRequest,
)
from meeting_triage.models.api.meeting_response import (
    CleanupResponse,
    CleanupStatsResponse,
    JobResponse,
    MeetingResponse,
    SyncResponse,
)
from meeting_triage.models.domain.automation_settings import AutomationSettings
from meeting_triage.repositories.user_repository import UserRepository
from meeting_triage.services.calendar.google_client import GoogleCalendarError
from meeting_triage.services.qualification.controller import (
    QualificationController,
    get_qualification_controller,
)
from meeting_triage.services.scheduling.job_scheduler import JobScheduler, get_job_scheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/users/{user_id}", tags=["meetings"])


def get_settings_store() -> type[UserRepository]:
    return UserRepository


async def user_settings(
    user_id: str, store: type[UserRepository] = Depends(get_settings_store)
) -> AutomationSettings:
    """Stored automation settings for the user; a malformed blob falls back to defaults."""
    try:
        return await store.get_automation_settings(user_id)
    except ValidationError as e:
        logger.warning("Invalid automation settings, using defaults", user_id=user_id, error=str(e))
        return AutomationSettings()


def _provider_error(user_id: str, e: GoogleCalendarError) -> HTTPException:
    logger.error("Calendar provider call failed", user_id=user_id, status_code=e.status_code, error=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Calendar provider error: {e}")


@router.post("/meetings", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def ingest_meeting(
    user_id: str,
    event: dict[str, Any] = Body(...),
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    """Store a meeting event and qualify it against the user's rules."""
    meeting = await controller.ingest_meeting(user_id, event, settings)
    return MeetingResponse.from_domain(meeting)


@router.get("/meetings/{meeting_id}", response_model=MeetingResponse)
async def get_meeting(
    user_id: str,
    meeting_id: str,
    controller: QualificationController = Depends(get_qualification_controller),
):
    meeting = await controller.get_meeting(meeting_id, user_id)
    return MeetingResponse.from_domain(meeting)


@router.post("/meetings/{meeting_id}/reevaluate", response_model=MeetingResponse)
async def reevaluate_meeting(
    user_id: str,
    meeting_id: str,
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    """Run the current rules again on a pending or needs_review meeting."""
    await controller.get_meeting(meeting_id, user_id)
    meeting = await controller.reevaluate(meeting_id, settings)
    return MeetingResponse.from_domain(meeting)


@router.post("/meetings/{meeting_id}/review", response_model=MeetingResponse)
async def resolve_review(
    user_id: str,
    meeting_id: str,
    request: ResolveReviewRequest,
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    """Record the human decision on a meeting awaiting review."""
    await controller.get_meeting(meeting_id, user_id)
    meeting = await controller.resolve_review(meeting_id, request.outcome, request.reason, settings)
    return MeetingResponse.from_domain(meeting)


@router.post("/meetings/{meeting_id}/no-show", response_model=MeetingResponse)
async def mark_no_show(
    user_id: str,
    meeting_id: str,
    request: NoShowRequest | None = None,
    controller: QualificationController = Depends(get_qualification_controller),
):
    await controller.get_meeting(meeting_id, user_id)
    request = request or NoShowRequest()
    meeting = await controller.mark_no_show(meeting_id, request.reason)
    return MeetingResponse.from_domain(meeting)


@router.post("/meetings/{meeting_id}/complete", response_model=MeetingResponse)
async def mark_completed(
    user_id: str,
    meeting_id: str,
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    await controller.get_meeting(meeting_id, user_id)
    meeting = await controller.mark_completed(meeting_id, settings)
    return MeetingResponse.from_domain(meeting)


@router.post("/meetings/{meeting_id}/status", response_model=MeetingResponse)
async def override_status(
    user_id: str,
    meeting_id: str,
    request: OverrideStatusRequest,
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    """Force a meeting into any status, including out of a terminal one."""
    await controller.get_meeting(meeting_id, user_id)
    meeting = await controller.override_status(meeting_id, request.status, request.reason, settings)
    return MeetingResponse.from_domain(meeting)


@router.post("/calendar/cleanup", response_model=CleanupResponse)
async def run_cleanup_now(
    user_id: str,
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    """Remove every disqualified meeting still on the user's calendar."""
    result = await controller.run_cleanup_now(user_id, settings)
    return CleanupResponse(**result)


@router.get("/calendar/cleanup/stats", response_model=CleanupStatsResponse)
async def cleanup_stats(
    user_id: str,
    controller: QualificationController = Depends(get_qualification_controller),
):
    return CleanupStatsResponse(**await controller.cleanup_stats(user_id))


@router.post("/calendar/sync", response_model=SyncResponse)
async def sync_calendar(
    user_id: str,
    request: SyncCalendarRequest | None = None,
    settings: AutomationSettings = Depends(user_settings),
    controller: QualificationController = Depends(get_qualification_controller),
):
    """Ingest business meetings from the provider calendar around now."""
    request = request or SyncCalendarRequest()
    try:
        result = await controller.sync_calendar(user_id, settings, request.days_back, request.days_ahead)
    except GoogleCalendarError as e:
        raise _provider_error(user_id, e) from e
    return SyncResponse(**result)


@router.get("/jobs/failed", response_model=list[JobResponse])
async def list_failed_jobs(
    user_id: str,
    limit: int = Query(100, ge=1, le=500),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    """Jobs that exhausted their retries or failed permanently."""
    return [JobResponse.from_domain(job) for job in await scheduler.list_failed(user_id, limit)]


@router.get("/settings/automation")
async def get_automation_settings(settings: AutomationSettings = Depends(user_settings)):
    return settings.to_blob()


@router.put("/settings/automation")
async def update_automation_settings(
    user_id: str,
    blob: dict[str, Any] = Body(...),
    store: type[UserRepository] = Depends(get_settings_store),
):
    """Validate and store the user's automation settings (camelCase keys)."""
    automation = AutomationSettings.from_blob(blob)
    await store.save_automation_settings(user_id, automation)
    return automation.to_blob()
