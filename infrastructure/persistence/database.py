"""Async engine and session factory construction"""
import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from infrastructure.config import Settings
from infrastructure.persistence.models import Base

logger = logging.getLogger(__name__)


def create_database_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine described by DATABASE_URL"""
    url = make_url(settings.DATABASE_URL)
    engine_config = {
        "echo": settings.DB_ECHO,
        "pool_pre_ping": True,
    }

    if url.get_backend_name() == "sqlite":
        # file-backed SQLite serializes writers; wait for the lock instead of failing
        logger.info("Creating async database engine for SQLite")
        engine_config["connect_args"] = {"timeout": settings.DB_POOL_TIMEOUT}
    else:
        logger.info(f"Creating async database engine for {url.get_backend_name()} (pool size {settings.DB_POOL_SIZE})")
        engine_config.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )

    return create_async_engine(url, **engine_config)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")
