"""
Async engine and session factory.

Every service commits or rolls back its own unit of work; the request
scoped session only guarantees that nothing stays open after a failure.
"""
from typing import AsyncIterator
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from app.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(url: str):
    # SQLite (tests, local runs) cannot share connections between tasks
    if url.startswith("sqlite"):
        return create_async_engine(url, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW
    )


async_engine = build_engine(settings.async_database_url)

# Settlement rows are returned to the caller after commit
AsyncSessionLocal = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_async_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            if session.in_transaction():
                logger.warning("Rolling back a transaction left open by a failed request")
                await session.rollback()
            raise


async def create_all_tables() -> None:
    """Create the schema directly; only used in development and by the tests."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
