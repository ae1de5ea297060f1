# cdadmin/infra/db_async.py
"""
Process-wide asyncpg pool.

Created by the app lifespan (or the migration runner) and shared by the
repositories through ``db_conn`` / ``safe_db_conn``.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from cdadmin.config import settings
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    """Create the pool once; later calls are no-ops."""
    global _pool
    if _pool is not None:
        return

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        server_settings={
            "application_name": "cdadmin",
            "statement_timeout": str(settings.pg_statement_timeout_ms),
        },
    )
    logger.info(f"asyncpg pool ready: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("asyncpg pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection for the duration of the block.

    With ``autocommit=False`` the block runs inside one transaction,
    rolled back if the block raises.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    async with _pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn


async def ping() -> bool:
    """Readiness probe used by /health/ready."""
    if _pool is None:
        return False
    async with db_conn() as conn:
        return await conn.fetchval("SELECT 1") == 1
