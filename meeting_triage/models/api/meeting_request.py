# meeting_triage/models/api/meeting_request.py
"""
Meeting request models.
Raw events are validated here before they reach the controller or evaluator.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from meeting_triage.errors import ValidationError
from meeting_triage.models.domain.meeting_domain import MeetingStatus

_AMOUNT_STRIP = str.maketrans("", "", "$,_ ")


class RawMeetingEvent(BaseModel):
    """A meeting as observed on the provider calendar or posted by a booking form."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    external_id: str = Field(..., min_length=1, max_length=255, description="Provider event ID")
    title: str = Field(default="Untitled Meeting", max_length=500)
    start: datetime
    end: datetime
    attendee_email: str | None = Field(default=None, max_length=320)
    attendee_name: str | None = Field(default=None, max_length=200)
    company: str | None = Field(default=None, max_length=200)
    revenue: Decimal | None = Field(default=None, ge=0)
    company_size: int | None = Field(default=None, ge=0)
    industry: str | None = Field(default=None, max_length=200)
    budget: Decimal | None = Field(default=None, ge=0)
    form_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("revenue", "budget", mode="before")
    @classmethod
    def normalise_amount(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.translate(_AMOUNT_STRIP)
            return value or None
        return value

    @field_validator("attendee_email", "attendee_name", "company", "industry", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)

    @model_validator(mode="after")
    def check_window(self) -> "RawMeetingEvent":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


def parse_raw_event(raw: dict[str, Any]) -> RawMeetingEvent:
    """
    Validate a raw event dict.

    Raises:
        ValidationError: With the first offending field
    """
    if not isinstance(raw, dict):
        raise ValidationError("Meeting event must be a JSON object", operation="ingest_meeting")

    try:
        return RawMeetingEvent.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"Invalid meeting event{f' field {location!r}' if location else ''}: {first.get('msg')}",
            field=location or None,
            operation="ingest_meeting",
        ) from e


class ResolveReviewRequest(BaseModel):
    """Human decision on a meeting awaiting review."""

    outcome: Literal["qualified", "disqualified"]
    reason: str | None = Field(default=None, max_length=500)


class NoShowRequest(BaseModel):
    """Request for marking a qualified meeting as a no-show."""

    reason: str = Field(default="did_not_attend", min_length=1, max_length=200)


class OverrideStatusRequest(BaseModel):
    """Explicit status override by the account owner."""

    status: MeetingStatus
    reason: str | None = Field(default=None, max_length=500)


class SyncCalendarRequest(BaseModel):
    """Window of provider events to ingest."""

    days_back: int = Field(default=1, ge=0, le=30)
    days_ahead: int = Field(default=30, ge=1, le=90)
