# meeting_triage/models/domain/automation_settings.py
"""
Per-user automation settings.

Users store these as a JSON blob (camelCase keys, written by the settings UI).
The blob is validated into a strict, frozen model at the boundary so unknown or
malformed keys never reach the controller or scheduler.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from meeting_triage.errors import ValidationError


class AutomationSettings(BaseModel):
    """Typed view of a user's automation settings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        strict=True,
        frozen=True,
    )

    auto_delete_disqualified: bool = False
    notify_calendar_deletions: bool = True
    cleanup_delay_minutes: int = Field(default=5, ge=0, le=1440)
    max_job_retries: int = Field(default=5, ge=1, le=20)
    time_per_auto_decision_minutes: int = Field(default=5, ge=0, le=240)
    time_per_manual_review_minutes: int = Field(default=5, ge=0, le=240)

    @classmethod
    def from_blob(cls, blob: dict[str, Any] | None) -> "AutomationSettings":
        """
        Validate a stored settings blob.

        Args:
            blob: Raw JSON object (camelCase or snake_case keys); None means defaults

        Returns:
            AutomationSettings

        Raises:
            ValidationError: If the blob has unknown keys or malformed values
        """
        if blob is None:
            return cls()
        if not isinstance(blob, dict):
            raise ValidationError("Automation settings must be a JSON object", operation="settings")

        try:
            return cls.model_validate(blob)
        except PydanticValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(
                f"Invalid automation setting '{location}': {first.get('msg')}",
                field=location or None,
                operation="settings",
            ) from e

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
