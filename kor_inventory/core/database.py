"""
Async database access for the catalog and the alert tables.

Two entry points share one session factory:
- get_db: FastAPI dependency for the admin routes
- get_db_session: context manager for the alert engine's collaborators
  (config store, inventory repository, notification log), which run from
  scheduled tasks with no request around them

Sessions commit on clean exit and roll back on error. Objects stay loaded
after commit (expire_on_commit=False) because the engine reads config rows
and products after their session has closed.
"""
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from kor_inventory.core.config import settings

if settings.ENVIRONMENT == "production":
    pool_config = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }
else:
    # Scheduler jobs plus a handful of admin requests
    pool_config = {
        "pool_size": 2,
        "max_overflow": 5,
        "pool_pre_ping": True,
    }

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **pool_config,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


@asynccontextmanager
async def get_db_session():
    """
    Unit of work outside a request:

        async with get_db_session() as db:
            config = await db.get(AlertConfig, ALERT_CONFIG_ID)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db():
    """Request-scoped session for the admin routes."""
    async with get_db_session() as session:
        yield session


async def create_tables() -> None:
    """Create products, users, alert_configs and alert_notifications if missing."""
    import kor_inventory.models  # noqa: F401  registers the tables on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
