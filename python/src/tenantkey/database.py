"""
Database connection and session management.

One async engine per process. The backing store is the sole arbiter of
consistency for credentials, challenges, sessions and memberships; services
rely on its transactions and row locks rather than in-process state.

Architecture:
    FastAPI request → get_session (one transaction) → AsyncEngine → PostgreSQL (asyncpg)
    Development / tests use aiosqlite against a local file or :memory:.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from .core.config import settings

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    """Pool tuning only applies to server databases, not SQLite."""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,   # Verify connections before using
        "pool_size": 20,         # Connections per FastAPI instance
        "max_overflow": 10,      # Burst capacity for spikes
        "pool_recycle": 3600,    # Recycle after 1 hour
        "pool_timeout": 30,      # Wait 30s for connection from pool
    }


def configure_sqlite_transactions(async_engine: AsyncEngine) -> None:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.
    
    SQLite ignores SELECT ... FOR UPDATE, and pysqlite/aiosqlite begin
    deferred transactions. Taking the write lock at BEGIN makes concurrent
    read-check-write transactions run one after another.
    """
    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
    
    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    **_engine_options(settings.DATABASE_URL),
)

if settings.DATABASE_URL.startswith("sqlite"):
    configure_sqlite_transactions(engine)

async_session_maker = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI endpoints to get database session.
    
    The whole request runs in one transaction: committed when the endpoint
    returns, rolled back if it raises.
    
    Usage:
        @router.post("/team/invite")
        async def invite(session: AsyncSession = Depends(get_session)):
            ...
    
    Yields:
        AsyncSession: Database session with automatic commit/rollback
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Initialize database tables.
    
    NOTE: In production, use migrations instead.
    This is only for development/testing.
    """
    # Register table metadata
    from . import models  # noqa: F401
    
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    
    logger.info("Database tables created successfully")


async def close_db() -> None:
    """Close database connections on shutdown."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed successfully")
