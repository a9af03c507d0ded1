"""Async database engine, session factory, and schema lifecycle helpers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import BACKEND_ROOT, settings
from app.core.logging import get_logger

logger = get_logger(__name__)

ALEMBIC_INI_PATH = BACKEND_ROOT / "alembic.ini"
MIGRATIONS_PATH = BACKEND_ROOT / "migrations"


def build_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine for the configured (or given) database URL."""
    url = database_url or settings.database_url
    kwargs: dict[str, object] = {"echo": settings.db_echo}
    if not url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory that keeps loaded rows usable after commit."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_maker() as session:
        yield session


def _alembic_config():
    from alembic.config import Config

    config = Config(str(ALEMBIC_INI_PATH))
    config.set_main_option("script_location", str(MIGRATIONS_PATH))
    config.set_main_option("sqlalchemy.url", settings.database_url)
    return config


def get_alembic_head_revision() -> str | None:
    """Return the local Alembic head revision id."""
    from alembic.script import ScriptDirectory

    return ScriptDirectory.from_config(_alembic_config()).get_current_head()


def _upgrade_to_head() -> None:
    from alembic import command

    command.upgrade(_alembic_config(), "head")


async def init_db() -> None:
    """Apply migrations at startup when auto-migrate is enabled."""
    if not settings.db_auto_migrate:
        logger.info("db.migrations.skipped", extra={"environment": settings.environment})
        return
    logger.info("db.migrations.upgrade_started", extra={"head": get_alembic_head_revision()})
    # Alembic's env runs its own event loop, so keep it off the app loop.
    await asyncio.to_thread(_upgrade_to_head)
    logger.info("db.migrations.upgrade_complete")


async def dispose_engine() -> None:
    """Release pooled connections at shutdown."""
    await engine.dispose()
    logger.info("db.engine.disposed")
