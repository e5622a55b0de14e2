# meeting_triage/main.py
"""
FastAPI application with database pool and Redis lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from meeting_triage.config import settings
from meeting_triage.db.pool import db_pool
from meeting_triage.errors import InvalidTransitionError, MeetingNotFoundError, ValidationError
from meeting_triage.infrastructure.observability.logging import get_logger, setup_logging
from meeting_triage.middleware import RequestContextMiddleware
from meeting_triage.routes import health, meetings, metrics
from meeting_triage.services.redis_client import redis_client

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    await db_pool.initialize()
    try:
        await redis_client.initialize()
    except RuntimeError:
        await db_pool.close()
        raise

    logger.info("All services initialized successfully")

    yield

    logger.info("Application shutting down")
    await redis_client.close()
    await db_pool.close()


app = FastAPI(
    title="Meeting Triage",
    description="Meeting qualification and scheduled-action engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(meetings.router)
app.include_router(metrics.router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(MeetingNotFoundError)
async def not_found_handler(request: Request, exc: MeetingNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "from_status": exc.from_status, "to_status": exc.to_status},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


# Outermost: request_id is bound before log_requests runs
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
