"""Connection pool lifecycle and the per-request connection dependency."""

import logging
from collections.abc import AsyncIterator

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings
from .errors import StoreError

logger = logging.getLogger(__name__)

pool: AsyncConnectionPool | None = None


async def init_db_pool() -> None:
    global pool

    # App still boots without a database; store-backed endpoints answer 500.
    if not settings.database_url:
        logger.warning("DATABASE_URL is not set; chat endpoints will be unavailable")
        return

    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        open=False,
        min_size=1,
        max_size=10,
        kwargs={"autocommit": True, "row_factory": dict_row},
    )
    await pool.open()


async def close_db_pool() -> None:
    global pool

    if pool is None:
        return

    await pool.close()
    pool = None


async def get_db_connection() -> AsyncIterator[AsyncConnection]:
    """Borrow a pooled connection; pool or connect failures surface as StoreError."""
    if pool is None:
        logger.error("Database connection requested but DATABASE_URL is not configured")
        raise StoreError("DATABASE_URL is not configured")

    try:
        async with pool.connection() as connection:
            yield connection
    except psycopg.Error as exc:
        # PoolTimeout is an OperationalError, so exhausted pools land here too.
        logger.exception("Could not use a pooled database connection")
        raise StoreError(str(exc)) from exc
