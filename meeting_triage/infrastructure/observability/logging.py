"""
Structured logging setup for the meeting triage engine.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_context,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every entry with the service name so worker and API logs can be merged."""
    event_dict.setdefault("service", "meeting-triage")
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_transition(meeting_id: str, user_id: str, from_status: str, to_status: str, source: str):
    """Log meeting status transitions with consistent fields."""
    logger = get_logger("transitions")

    logger.info(
        "Meeting status transition",
        meeting_id=meeting_id,
        user_id=user_id,
        from_status=from_status,
        to_status=to_status,
        source=source,
        event_type="meeting_transition",
    )


def log_job_outcome(job_id: str, job_type: str, outcome: str, retry_count: int, error: str = None):
    """Log scheduled job results with consistent fields."""
    logger = get_logger("jobs")

    log_data = {
        "job_id": job_id,
        "job_type": job_type,
        "outcome": outcome,
        "retry_count": retry_count,
        "event_type": "job_outcome",
    }

    if error:
        log_data["error"] = error

    if outcome == "permanent_failure":
        logger.error("Scheduled job failed", **log_data)
    elif outcome == "retryable_failure":
        logger.warning("Scheduled job will retry", **log_data)
    else:
        logger.info("Scheduled job completed", **log_data)
