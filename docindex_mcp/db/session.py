"""
Database Session Management

Provides the async SQLAlchemy engine and session factory for the registry.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..core.logging import get_logger
from ..settings import DocIndexSettings, get_settings
from .models import Base

logger = get_logger(__name__)


def create_engine(settings: DocIndexSettings | None = None) -> AsyncEngine:
    """Create the async engine for ``settings.database_url``."""
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create registry tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Registry tables ready on {engine.url.render_as_string(hide_password=True)}")
