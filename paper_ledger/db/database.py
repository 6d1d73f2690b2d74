"""
Paper Options Ledger - Database Connection
"""
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from loguru import logger

from paper_ledger.config import settings


def build_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Create an async engine, defaulting to the configured DATABASE_URL."""
    return create_async_engine(
        url or settings.database_url,
        echo=echo,
        pool_pre_ping=True,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine()

# Create async session factory
async_session_maker = build_session_maker(engine)

# Base class for models
Base = declarative_base()


async def init_db(bind: Optional[AsyncEngine] = None):
    """Initialize database tables."""
    bind = bind or engine
    async with bind.begin() as conn:
        # Import models so they're registered on Base.metadata
        from paper_ledger.db.models import position  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")


async def get_db() -> AsyncSession:
    """Yield a session, committing on success and rolling back on error."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
