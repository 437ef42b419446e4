"""asyncpg pool shared by the membership store and identity directory."""

import asyncio
import logging
from typing import Optional

import asyncpg

from membersync.config import AppConfig, get_config
from membersync.db.models import Table

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0

_pool: Optional[asyncpg.Pool] = None


async def _check_ready(pool: asyncpg.Pool, users_table: str) -> None:
    """Fail unless the database answers; warn when the schema is incomplete.

    Raises:
        RuntimeError: If the database does not answer ``SELECT 1``
    """
    async with pool.acquire() as conn:
        if await conn.fetchval("SELECT 1") != 1:
            raise RuntimeError("Database health check failed")
        for table in (Table.MEMBERSHIPS, users_table):
            if await conn.fetchval("SELECT to_regclass($1) IS NOT NULL", table) is not True:
                logger.warning(
                    f"Table {table} not found; run membersync-migrate or check "
                    "IDENTITY_USERS_TABLE"
                )


async def get_pool(config: Optional[AppConfig] = None) -> asyncpg.Pool:
    """
    Get or create the process-wide connection pool.

    The first call opens and checks the pool; later calls return it
    unchanged.

    Args:
        config: Configuration to size the pool from. Defaults to get_config().

    Returns:
        asyncpg.Pool: Ready connection pool

    Raises:
        asyncio.TimeoutError: If the pool cannot connect in time
        RuntimeError: If the database does not answer
    """
    global _pool

    if _pool is not None:
        return _pool

    config = config or get_config()

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                str(config.db_dsn),
                min_size=config.db_pool_min,
                max_size=config.db_pool_max,
            ),
            timeout=CONNECT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        raise asyncio.TimeoutError(
            f"Database connection timed out after {CONNECT_TIMEOUT_SECONDS:.0f} seconds"
        )

    try:
        await _check_ready(pool, config.identity_users_table)
    except (asyncpg.PostgresError, OSError, RuntimeError) as e:
        await pool.close()
        raise RuntimeError(f"Database health check failed: {e}") from e

    _pool = pool
    logger.info(f"Database pool ready: min={config.db_pool_min}, max={config.db_pool_max}")
    return _pool


async def close_pool() -> None:
    """Close the shared pool, terminating connections that do not release in time."""
    global _pool
    if _pool is None:
        return

    pool, _pool = _pool, None
    try:
        await asyncio.wait_for(pool.close(), timeout=CONNECT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Pool close timed out; terminating remaining connections")
        pool.terminate()
