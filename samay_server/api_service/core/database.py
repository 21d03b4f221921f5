from typing import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .settings import settings

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool tuning only applies to server databases."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=300,
    )


# Create async engine
engine = build_engine(settings.SQLALCHEMY_DATABASE_URL, echo=settings.DEBUG)

# Create async session maker
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models"""
    metadata = MetaData()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session_async(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional scope for background jobs. Commits on success, rolls back and re-raises on error."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Async database session committed.")
        except Exception as e:
            await session.rollback()
            logger.error(f"Async database session rolled back due to error: {e}", exc_info=True)
            raise
        finally:
            await session.close()


async def init_db(db_engine: AsyncEngine = engine) -> None:
    """Create any missing tables."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def check_db_connection_async(db_engine: AsyncEngine = engine) -> bool:
    try:
        async with db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Failed to connect to the database (async): {e}", exc_info=True)
        return False
