"""
Query helpers used by the feature repositories.

Every helper borrows a pooled connection, runs one statement and turns
driver errors into DatabaseError so services can log and fall back.
"""

import asyncio
import functools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from napoleon.db.pool import db_pool
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A query against the message store failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(operation: str, query: str, *, transactional: bool = False) -> AsyncIterator[psycopg.AsyncCursor]:
    borrow = db_pool.transaction if transactional else db_pool.connection
    try:
        async with borrow() as conn:
            async with conn.cursor() as cur:
                yield cur
    except (psycopg.Error, RuntimeError) as e:
        logger.error(
            "Database query failed",
            operation=operation,
            query=query[:100],
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """Run a query and return its first row, or None."""
    async with _cursor("fetch_one", query) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    async with _cursor("fetch_all", query) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def fetch_val(query: str, params: tuple = ()) -> Any:
    """First column of the first row (COUNT(*) and friends)."""
    row = await fetch_one(query, params)
    return next(iter(row.values()), None) if row else None


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run an INSERT/UPDATE/DELETE and return the affected row count."""
    async with _cursor("execute", query) as cur:
        await cur.execute(query, params)
        return cur.rowcount


async def execute_many(query: str, params_seq: list[tuple]) -> int:
    """
    Run one statement per parameter tuple inside a single transaction.

    Used for the action items of one analysis, which are written together
    or not at all.
    """
    if not params_seq:
        return 0

    async with _cursor("execute_many", query, transactional=True) as cur:
        await cur.executemany(query, params_seq)
        return cur.rowcount


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository call when the connection itself failed.

    Query errors (bad SQL, constraint violations) are raised immediately;
    only psycopg.OperationalError causes another attempt, with exponential
    backoff starting at base_delay seconds.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not isinstance(e.__cause__, psycopg.OperationalError):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"{func.__name__} failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Database connection failed, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
