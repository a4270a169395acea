# fleetdesk/infra/migrations_async.py
"""
Async database migrations runner (asyncpg).
"""
from __future__ import annotations
from pathlib import Path

from fleetdesk.config import settings
from fleetdesk.infra.db_async import db_conn
from fleetdesk.infra.logging_config import get_logger

logger = get_logger(__name__)


def _sql_dir() -> Path:
    return Path(__file__).resolve().parent / "sql"


async def apply_migrations() -> dict:
    """
    Apply SQL migrations from fleetdesk/infra/sql in filename order.

    Applied versions are tracked in ``schema_migrations``; the whole run is
    one transaction, so a failing file leaves nothing half-applied.

    Returns:
        dict with ``ok``, ``applied`` (filenames applied in this run) and ``count``.
    """
    files = sorted(p for p in _sql_dir().glob("*.sql") if p.is_file())

    async with db_conn(autocommit=False) as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations(
              version text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )

        rows = await conn.fetch("SELECT version FROM schema_migrations")
        applied = {row['version'] for row in rows}

        applied_now = []
        for p in files:
            version = p.name
            if version in applied:
                logger.debug(f"Migration {version} already applied, skipping")
                continue

            logger.info(f"Applying migration: {version}")
            await conn.execute(p.read_text(encoding="utf-8"))
            await conn.execute(
                "INSERT INTO schema_migrations(version) VALUES ($1)",
                version
            )
            applied_now.append(version)

    logger.info(f"Migrations complete: {len(applied_now)} applied")
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}


async def current_schema_version() -> str | None:
    """Latest applied migration filename, or None on an empty database."""
    async with db_conn() as conn:
        exists = await conn.fetchval("SELECT to_regclass('schema_migrations') IS NOT NULL")
        if not exists:
            return None
        return await conn.fetchval("SELECT max(version) FROM schema_migrations")


async def validate_schema_version(expected: str | None = None) -> str:
    """
    Fail startup unless the latest applied migration is ``expected``.

    Does NOT run migrations: ``python -m fleetdesk.infra.migrate`` does.

    Raises:
        RuntimeError: empty database or version mismatch
    """
    expected = expected or settings.expected_schema_version
    current = await current_schema_version()

    if current is None:
        error = "No migrations have been applied. Run migrations first: python -m fleetdesk.infra.migrate"
        logger.critical(error)
        raise RuntimeError(error)

    if current != expected:
        error = (
            f"Schema version mismatch! Expected: {expected}, Found: {current}. "
            f"Run migrations to update schema: python -m fleetdesk.infra.migrate"
        )
        logger.critical(error, extra={"expected": expected, "current": current})
        raise RuntimeError(error)

    logger.info(f"Schema version validated: {current}")
    return current
