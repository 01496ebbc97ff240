"""Alembic environment for the p2p_events outbox.

Migrations are raw SQL (op.execute); there is no ORM metadata to diff, so
autogenerate is disabled. The URL always comes from config.settings, and the
revision history lives in its own table so the outbox can share a database.
"""
import asyncio
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from config.settings import settings

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

VERSION_TABLE = "p2p_alembic_version"

_COMMON_OPTS: dict[str, Any] = {
    "target_metadata": None,
    "version_table": VERSION_TABLE,
    "transaction_per_migration": True,
}


def run_offline() -> None:
    """Emit SQL to stdout without a live connection."""
    context.configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_COMMON_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, **_COMMON_OPTS)
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    # NullPool: the migration run is a one-shot process
    migration_engine = create_async_engine(settings.DATABASE_URL, poolclass=pool.NullPool)
    try:
        async with migration_engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await migration_engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
