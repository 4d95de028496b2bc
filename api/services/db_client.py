"""PostgreSQL connection pool (asyncpg) shared by the session store."""

from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
import structlog

from config import get_settings

LOGGER = structlog.get_logger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def get_db_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            host=settings.postgres_host,
            port=settings.postgres_port,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        LOGGER.info(
            "db_pool_created",
            host=settings.postgres_host,
            database=settings.postgres_db,
            max_size=settings.db_pool_max_size,
        )
    return _pool


async def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        LOGGER.info("db_pool_closed")


@asynccontextmanager
async def get_db_connection():
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection
