"""
Alembic environment for the reminder bot schema (async, SQLAlchemy ≥2.0).

The connection string comes from ``config.settings`` (DATABASE_URL, then
DATABASE_PUBLIC_URL) with ``sqlalchemy.url`` in alembic.ini as a last
resort. Offline mode renders DDL only; online mode runs over asyncpg.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config import settings
from db.db import Base

# ---------------------------------------------------------------------
# 1. Logging
# ---------------------------------------------------------------------
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ---------------------------------------------------------------------
# 2. Model metadata (users, reminder_definitions, delivery_history,
#    day_times_cache)
# ---------------------------------------------------------------------
target_metadata = Base.metadata


# ---------------------------------------------------------------------
# 3. Database URL helper
# ---------------------------------------------------------------------
def _database_url() -> str:
    url = (
        settings.DATABASE_URL
        or settings.DATABASE_PUBLIC_URL
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError("DATABASE_URL not set and sqlalchemy.url missing from alembic.ini")

    if "+asyncpg" not in url:
        for prefix in ("postgres://", "postgresql://"):
            if url.startswith(prefix):
                url = url.replace(prefix, "postgresql+asyncpg://", 1)
                break
    return url


# ---------------------------------------------------------------------
# 4. Offline migrations (generate SQL only)
# ---------------------------------------------------------------------
def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


# ---------------------------------------------------------------------
# 5. Online migrations (run against DB) – async
# ---------------------------------------------------------------------
def _make_async_engine() -> AsyncEngine:
    return create_async_engine(_database_url(), poolclass=pool.NullPool)


def _run_sync_migrations(sync_conn) -> None:
    context.configure(connection=sync_conn, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = _make_async_engine()
    async with engine.connect() as conn:
        await conn.run_sync(_run_sync_migrations)
    await engine.dispose()


# ---------------------------------------------------------------------
# 6. Entrypoint
# ---------------------------------------------------------------------
if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
