"""
Database retry utilities for handling transient database errors.

This module provides retry logic with exponential backoff to handle transient
errors gracefully, supporting both SQLite and PostgreSQL backends:

SQLite errors:
- "database is locked" - concurrent write contention
- "SQLITE_BUSY" / "SQLITE_LOCKED" - database busy states

PostgreSQL errors:
- Deadlocks (40P01)
- Serialization failures (40001)
- Connection errors
- "could not obtain lock" - lock contention

Every wrapper takes the Database instance explicitly; there is no module-level
connection.
"""

import asyncio
import logging
import random
import time
from typing import Callable, Optional, TypeVar

from databases import Database

from api.metrics import DB_QUERY_RETRIES_TOTAL

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD = 1.0  # seconds

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1  # 100ms
DEFAULT_MAX_DELAY = 2.0  # 2 seconds
DEFAULT_EXPONENTIAL_BASE = 2

_SQLITE_PATTERNS = (
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
)

_POSTGRES_PATTERNS = (
    "deadlock detected",  # 40P01
    "could not serialize access",  # 40001 serialization failure
    "could not obtain lock",
    "connection refused",
    "connection reset",
    "server closed the connection unexpectedly",
    "canceling statement due to lock timeout",
    "lock timeout",
)


class DatabaseRetryableError(Exception):
    """Raised when a database operation fails after all retries exhausted."""


def is_retryable_database_error(exc: BaseException) -> bool:
    """
    Check if an exception is a retryable database error.

    Supports both SQLite and PostgreSQL error patterns.
    """
    error_str = str(exc).lower()

    if any(pattern in error_str for pattern in _SQLITE_PATTERNS):
        return True
    if any(pattern in error_str for pattern in _POSTGRES_PATTERNS):
        return True

    # asyncpg exposes the SQLSTATE
    if getattr(exc, "sqlstate", None) in ("40P01", "40001"):
        return True

    # databases wraps the underlying driver exception
    if exc.__cause__ is not None and exc.__cause__ is not exc:
        return is_retryable_database_error(exc.__cause__)

    return False


async def execute_with_retry(
    func: Callable,
    *args,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    **kwargs,
) -> T:
    """
    Execute an async function with retry logic for transient database errors.

    Uses exponential backoff with jitter to reduce contention.

    Raises:
        DatabaseRetryableError: If all retries are exhausted
        Other exceptions: Non-retryable errors are re-raised immediately
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_database_error(e):
                raise

            last_exception = e

            if attempt < max_retries:
                DB_QUERY_RETRIES_TOTAL.inc()
                delay = min(base_delay * (DEFAULT_EXPONENTIAL_BASE**attempt), max_delay)
                # Jitter (+/-25%) so concurrent retries spread out
                jitter = delay * 0.25 * (2 * random.random() - 1)
                delay = max(0.01, delay + jitter)

                logger.warning(
                    f"Database error (attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database error after {max_retries + 1} attempts, giving up: {e}")

    raise DatabaseRetryableError(f"Database operation failed after {max_retries + 1} attempts: {last_exception}")


def _log_if_slow(query, started: float) -> None:
    elapsed = time.monotonic() - started
    if elapsed >= SLOW_QUERY_THRESHOLD:
        logger.warning(f"Slow query ({elapsed:.2f}s): {str(query)[:500]}")


async def fetch_one_with_retry(db: Database, query, max_retries: int = DEFAULT_MAX_RETRIES):
    """Execute a fetch_one query with retry logic. Returns a row or None."""

    async def _fetch():
        started = time.monotonic()
        result = await db.fetch_one(query)
        _log_if_slow(query, started)
        return result

    return await execute_with_retry(_fetch, max_retries=max_retries)


async def fetch_all_with_retry(db: Database, query, max_retries: int = DEFAULT_MAX_RETRIES):
    """Execute a fetch_all query with retry logic. Returns a list of rows."""

    async def _fetch():
        started = time.monotonic()
        result = await db.fetch_all(query)
        _log_if_slow(query, started)
        return result

    return await execute_with_retry(_fetch, max_retries=max_retries)


async def fetch_val_with_retry(db: Database, query, max_retries: int = DEFAULT_MAX_RETRIES):
    """Execute a fetch_val query with retry logic. Returns a scalar or None."""

    async def _fetch():
        started = time.monotonic()
        result = await db.fetch_val(query)
        _log_if_slow(query, started)
        return result

    return await execute_with_retry(_fetch, max_retries=max_retries)


async def db_execute_with_retry(db: Database, query, values=None, max_retries: int = DEFAULT_MAX_RETRIES):
    """
    Execute a database write query with retry logic for transient database errors.

    Unique violations and other integrity errors are not retryable and
    propagate unchanged.
    """

    async def _execute():
        started = time.monotonic()
        if values is not None:
            result = await db.execute(query, values)
        else:
            result = await db.execute(query)
        _log_if_slow(query, started)
        return result

    return await execute_with_retry(_execute, max_retries=max_retries)
