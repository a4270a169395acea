# fleetdesk/infra/db_async.py
"""
Async database connection pool (asyncpg).
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from fleetdesk.config import settings
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


def _connect_kwargs() -> dict:
    """Connection parameters shared by the pool and the LISTEN connection."""
    return dict(
        dsn=settings.database_url,
        host=None if settings.database_url else settings.pghost,
        port=None if settings.database_url else settings.pgport,
        user=None if settings.database_url else settings.pguser,
        password=None if settings.database_url else settings.pgpassword,
        database=None if settings.database_url else settings.pgdatabase,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        server_settings={
            'application_name': 'fleetdesk',
            'statement_timeout': str(settings.pg_statement_timeout_ms),
            'idle_in_transaction_session_timeout': str(settings.pg_idle_in_tx_timeout_ms),
        },
    )


async def init_pool() -> None:
    """Initialize connection pool on startup"""
    global _pool

    if _pool is not None:
        return

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        **_connect_kwargs(),
    )

    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def open_listen_connection() -> asyncpg.Connection:
    """Dedicated connection for LISTEN, kept outside the pool."""
    return await asyncpg.connect(**_connect_kwargs())


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None
    logger.info("Connection pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Get database connection from pool (async).

    Usage:
        async with db_conn() as conn:
            row = await conn.fetchrow("SELECT data FROM documents WHERE id = $1", doc_id)

    Args:
        autocommit: If True (default), no explicit transaction. If False, the
            block runs in a transaction committed on success.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    conn = await _pool.acquire()

    try:
        if not autocommit:
            async with conn.transaction():
                yield conn
        else:
            yield conn
    finally:
        await _pool.release(conn)

