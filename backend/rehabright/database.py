"""Database connection and session management."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rehabright.config import get_settings
from rehabright.models.base import Base


settings = get_settings()


def build_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    if not database_url.startswith("sqlite"):
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        **kwargs
    )


# Async engine for FastAPI
async_engine = build_engine(settings.database_url, echo=settings.debug)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def init_models(engine: AsyncEngine = async_engine):
    """Create all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
