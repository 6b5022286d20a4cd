"""Async database session and engine configuration."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from workhaven.config import settings

Base = declarative_base()

# Async engine for SQLite (default) or provided DATABASE_URL
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
)

# Session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create tables that do not exist yet."""
    # Registers the tables on Base.metadata
    from workhaven.models import tables  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
