"""Postgres connection pool for the history store.

Uses ``asyncpg`` directly.  Every helper runs inside a transaction so that a
multi-statement unit of work either commits or rolls back as a whole.
``build_upsert_query`` renders the idempotent writes used by the stores.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("fittoday.db")

# Module-level connection pool, initialized once at startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at startup."""
    global _pool
    s = settings or get_settings()
    if not s.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=s.db_command_timeout,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)",
        s.db_pool_min_size, s.db_pool_max_size,
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized; call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    pool: asyncpg.Pool | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection inside a transaction.

    Usage::

        async with get_connection() as conn:
            rows = await conn.fetch("SELECT * FROM workout_history WHERE account_id = $1", aid)
    """
    p = pool or get_pool()
    async with p.acquire() as conn:
        async with conn.transaction():
            yield conn


async def execute(query: str, *args: Any, pool: asyncpg.Pool | None = None) -> str:
    """Execute a single statement and return its status."""
    async with get_connection(pool) as conn:
        return await conn.execute(query, *args)


async def fetch(query: str, *args: Any, pool: asyncpg.Pool | None = None) -> list[asyncpg.Record]:
    """Fetch rows."""
    async with get_connection(pool) as conn:
        return await conn.fetch(query, *args)


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    touch_column: str | None = "updated_at",
) -> str:
    """Build a parameterized ``INSERT ... ON CONFLICT`` statement.

    Columns bind to ``$1..$n`` in the order given.  On conflict the
    ``update_columns`` (every non-conflict column by default) take the new
    values and ``touch_column``, if any, is set to ``NOW()``.  With nothing
    to update the statement becomes ``DO NOTHING``.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    if update_columns:
        assignments = [f"{col} = EXCLUDED.{col}" for col in update_columns]
        if touch_column:
            assignments.append(f"{touch_column} = NOW()")
        action = "DO UPDATE SET " + ", ".join(assignments)
    else:
        action = "DO NOTHING"

    params = ", ".join(f"${n}" for n in range(1, len(columns) + 1))
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({params}) "
        f"ON CONFLICT ({', '.join(conflict_columns)}) {action}"
    )
