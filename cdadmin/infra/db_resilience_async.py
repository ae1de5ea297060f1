# cdadmin/infra/db_resilience_async.py
"""
Async database resilience utilities.
Retry on transient asyncpg errors when acquiring a connection.
"""
from __future__ import annotations
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager

import asyncpg
from cdadmin.infra.db_async import db_conn
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors:
    - Connection errors
    - Server closed connection
    - Too many connections
    - Deadlock
    """
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
    )):
        return True

    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return True

    # Pool not initialised, SQL errors, constraint violations
    if isinstance(exc, (asyncpg.PostgresError, RuntimeError)):
        return False

    error_message = str(exc).lower()
    transient_patterns = [
        "connection",
        "timeout",
        "closed",
        "network",
        "too many connections",
        "connection reset",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True, max_retries: int = 3):
    """
    Database connection with automatic retry on transient errors.

    Only connection acquisition is retried; once the caller's block has
    started, errors propagate unchanged so writes are never replayed.

    Usage:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM tasks WHERE id = $1", task_id)
    """
    delay = 0.1

    async with AsyncExitStack() as stack:
        for attempt in range(max_retries + 1):
            try:
                conn = await stack.enter_async_context(db_conn(autocommit=autocommit))
                break
            except Exception as exc:
                if not is_transient_error(exc):
                    raise

                if attempt >= max_retries:
                    logger.error(f"Max retries ({max_retries}) exceeded getting connection")
                    raise

                logger.warning(
                    f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2.0, 5.0)

        yield conn
