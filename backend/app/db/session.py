"""Async database engine, session factory and migration bootstrap."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import BACKEND_ROOT, settings
from app.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)
ALEMBIC_INI = BACKEND_ROOT / "alembic.ini"


def normalize_database_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


engine = create_async_engine(
    normalize_database_url(settings.database_url),
    pool_pre_ping=True,
)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_maker() as session:
        yield session


def _alembic_config() -> Config:
    config = Config(str(ALEMBIC_INI))
    # Keep the application logging setup when migrating at startup.
    config.attributes["configure_logger"] = False
    config.set_main_option("script_location", str(BACKEND_ROOT / "migrations"))
    config.set_main_option("sqlalchemy.url", normalize_database_url(settings.database_url))
    return config


def get_alembic_head_revision() -> str | None:
    """Return the head revision id of the bundled migration scripts."""
    return ScriptDirectory.from_config(_alembic_config()).get_current_head()


async def init_db() -> None:
    """Apply migrations on startup when auto-migration is enabled."""
    if not settings.db_auto_migrate:
        return
    logger.info("db.migrate.start", extra={"head": get_alembic_head_revision()})
    # env.py drives its own event loop, so run it off the serving loop.
    await asyncio.to_thread(command.upgrade, _alembic_config(), "head")
    logger.info("db.migrate.complete")
