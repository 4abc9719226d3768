"""
Alembic environment for the task/reminder schema – async (SQLAlchemy ≥2.0).

The connection string comes from the same DATABASE_URL resolution the app
uses (db.db._build_url), falling back to ``sqlalchemy.url`` in alembic.ini.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine

# ---------------------------------------------------------------------
# 1. Logging
# ---------------------------------------------------------------------
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ---------------------------------------------------------------------
# 2. Model metadata (tasks + task_reminder_logs)
# ---------------------------------------------------------------------
from db.db import Base, _build_url
target_metadata = Base.metadata

# ---------------------------------------------------------------------
# 3. Database URL
# ---------------------------------------------------------------------
def _database_url() -> str:
    try:
        return _build_url()
    except RuntimeError:
        url = config.get_main_option("sqlalchemy.url")
        if not url:
            raise RuntimeError(
                "DATABASE_URL not set and sqlalchemy.url missing from alembic.ini"
            )
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

def _configure_and_run(sync_conn) -> None:
    context.configure(
        connection=sync_conn,
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most columns in place
        render_as_batch=sync_conn.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()

async def run_migrations_online() -> None:
    engine = _make_async_engine()
    async with engine.connect() as conn:
        await conn.run_sync(_configure_and_run)
    await engine.dispose()

# ---------------------------------------------------------------------
# 6. Entrypoint
# ---------------------------------------------------------------------
if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
