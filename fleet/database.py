"""Fleet database: engine, session factory and schema bootstrap.

Stores the services, both dependency scopes, profiles and the orchestration
event log read and written by ``orchestrate.sql_store`` and the database
reporter.
"""

import asyncio
import logging
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from fleet.config import settings

logger = logging.getLogger(__name__)


def _is_sqlite(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def _prepare_sqlite_file(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite fleet database."""
    if not _is_sqlite(database_url):
        return
    database = make_url(database_url).database
    if database in (None, "", ":memory:"):
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


_prepare_sqlite_file(settings.database_url)

engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        yield session


def _upgrade_schema() -> None:
    from alembic import command
    from alembic.config import Config

    command.upgrade(Config("alembic.ini"), "head")


async def init_db():
    # Register every fleet table on Base.metadata.
    import fleet.entities  # noqa: F401

    if _is_sqlite(settings.database_url):
        # Local fleets: create the five tables directly.
        logger.info("Creating fleet tables on %s", settings.database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    else:
        logger.info("Applying fleet migrations")
        # alembic/env.py drives its own event loop, so keep it off this one.
        await asyncio.to_thread(_upgrade_schema)


async def close_db() -> None:
    await engine.dispose()
