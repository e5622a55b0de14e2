"""
Query helpers shared by the repositories.

Each helper runs on the caller's connection when one is passed (so work can join
an open transaction) and otherwise borrows one from the pool for the single
statement.
"""

import asyncio
import functools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from meeting_triage.db.pool import db_pool
from meeting_triage.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Raised for any failed statement; wraps the underlying psycopg error."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _borrow(connection: psycopg.AsyncConnection | None) -> AsyncIterator[psycopg.AsyncConnection]:
    if connection is not None:
        yield connection
        return
    async with db_pool.connection() as conn:
        yield conn


async def _run(query: str, params: tuple, connection, operation: str, fetch: str | None):
    try:
        async with _borrow(connection) as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                if fetch == "one":
                    return await cur.fetchone()
                if fetch == "all":
                    return await cur.fetchall()
                return cur.rowcount
    except psycopg.Error as e:
        logger.error("Database query failed", operation=operation, query=query.strip()[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict, or None.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional open connection (e.g. inside a transaction)
    """
    return await _run(query, params, connection, "fetch_one", "one")


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return every row as a dict."""
    return await _run(query, params, connection, "fetch_all", "all")


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """Execute query and return the first column of the first row."""
    row = await _run(query, params, connection, "fetch_val", "one")
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Execute a write and return the number of affected rows."""
    return await _run(query, params, connection, "execute", None)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository call when the connection drops.

    Only DatabaseErrors caused by psycopg.OperationalError are retried, with
    exponential backoff; integrity and data errors surface immediately.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not isinstance(e.__cause__, psycopg.OperationalError) or attempt == max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
