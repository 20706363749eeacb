"""
Database engines and the process-wide session factory.

Engines are created lazily and cached. When DATABASE_URL is empty no engine
is created and get_session_factory() returns None, which the transaction
coordinator treats as "connection unavailable".
"""

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from database.sessions import SQLAlchemySessionFactory
from shared.config import get_settings

logger = logging.getLogger(__name__)


def _create_engine(url: str) -> AsyncEngine:
    settings = get_settings()
    return create_async_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.DATABASE_ECHO,
    )


@lru_cache
def get_engine() -> AsyncEngine | None:
    """Primary engine, or None when DATABASE_URL is not configured."""
    settings = get_settings()
    if not settings.DATABASE_URL:
        logger.warning("DATABASE_URL is not configured, transactional sessions unavailable")
        return None

    engine = _create_engine(settings.DATABASE_URL)
    logger.info(
        f"Database engine initialized (pool_size={settings.DATABASE_POOL_SIZE}, "
        f"max_overflow={settings.DATABASE_MAX_OVERFLOW})"
    )
    return engine


@lru_cache
def get_replica_engine() -> AsyncEngine | None:
    """Read replica engine, or None when DATABASE_REPLICA_URL is not configured."""
    settings = get_settings()
    if not settings.DATABASE_REPLICA_URL:
        return None

    engine = _create_engine(settings.DATABASE_REPLICA_URL)
    logger.info("Database replica engine initialized")
    return engine


@lru_cache
def get_session_factory() -> SQLAlchemySessionFactory | None:
    """
    Get the cached session factory shared by all requests.

    Returns:
        SQLAlchemySessionFactory, or None when no primary engine is configured
    """
    engine = get_engine()
    if engine is None:
        return None
    return SQLAlchemySessionFactory(engine, get_replica_engine())


async def dispose_engines() -> None:
    """Dispose any created engines and reset the cached factory."""
    if get_engine.cache_info().currsize:
        engine = get_engine()
        if engine is not None:
            await engine.dispose()
    if get_replica_engine.cache_info().currsize:
        replica = get_replica_engine()
        if replica is not None:
            await replica.dispose()

    get_session_factory.cache_clear()
    get_replica_engine.cache_clear()
    get_engine.cache_clear()
