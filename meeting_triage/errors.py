"""
Error taxonomy shared by the qualification controller, job scheduler and adapters.

ValidationError            malformed rule/meeting/settings input, rejected at the boundary
TransientExecutionError    provider hiccup, the job is retried with backoff
PermanentExecutionError    the action can never succeed, the job is marked failed
IdempotentSuccess          the target is already in the desired end state
"""


class TriageError(Exception):
    """Base exception for the triage engine."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ValidationError(TriageError):
    """Input failed validation and never reached the evaluator or the queue."""

    def __init__(self, message: str, field: str | None = None, operation: str | None = None):
        super().__init__(message, operation=operation, recoverable=False)
        self.field = field


class MeetingNotFoundError(TriageError):
    """Meeting id does not exist."""

    def __init__(self, meeting_id: str):
        super().__init__(f"Meeting not found: {meeting_id}", operation="load_meeting", recoverable=False)
        self.meeting_id = meeting_id


class InvalidTransitionError(TriageError):
    """Requested status change is not allowed by the meeting state machine."""

    def __init__(self, meeting_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Cannot move meeting {meeting_id} from {from_status} to {to_status}",
            operation="transition",
            recoverable=False,
        )
        self.meeting_id = meeting_id
        self.from_status = from_status
        self.to_status = to_status


class TransientExecutionError(TriageError):
    """External call failed in a way that may succeed later."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, operation=operation, recoverable=True)


class PermanentExecutionError(TriageError):
    """External call can never succeed for this job."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, operation=operation, recoverable=False)


class IdempotentSuccess(TriageError):
    """Target already in the desired end state; callers treat this as success."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, operation=operation, recoverable=False)
