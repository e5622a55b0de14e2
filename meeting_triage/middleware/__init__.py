"""HTTP middleware for the meeting triage API."""

from meeting_triage.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
