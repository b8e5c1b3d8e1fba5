"""Alembic environment for the fleet schema.

The URL comes from ``fleet.config.settings`` (``FLEET_DATABASE_URL``), so
migrations always target the same database as the API and the CLI.
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import fleet.entities  # noqa: F401,E402  registers the fleet tables
from fleet.config import settings  # noqa: E402
from fleet.database import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", settings.database_url)
target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most constraints in place.
    render_as_batch = settings.database_url.startswith("sqlite")
    context.configure(target_metadata=target_metadata, render_as_batch=render_as_batch, **kwargs)


def run_migrations_offline() -> None:
    """Emit the fleet schema as SQL without a database connection."""
    _configure(
        url=settings.database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection):
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def _run_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(_run_with_connection)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(_run_online())
