"""
Database engine configuration for the Lucky Money bot

Async SQLAlchemy 2.0 setup. PostgreSQL (asyncpg) in production, SQLite
(aiosqlite) for development and tests.
"""

from typing import Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from config.config import DATABASE_URL, DATABASE_ECHO, ENVIRONMENT
from src.database.models import Base


# Global engine and session maker
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """
    Create an async engine with dialect-specific settings

    Args:
        url: SQLAlchemy URL (postgresql+asyncpg:// or sqlite+aiosqlite://)

    Returns:
        Configured AsyncEngine instance
    """
    if url.startswith("sqlite"):
        # timeout: seconds a writer waits on SQLITE_BUSY before "database is locked"
        return create_async_engine(url, echo=DATABASE_ECHO, connect_args={"timeout": 5})

    is_production = ENVIRONMENT == "production"
    return create_async_engine(
        url,
        pool_size=10 if is_production else 5,
        max_overflow=20 if is_production else 10,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=DATABASE_ECHO,
        connect_args={
            "statement_cache_size": 0,
            "server_settings": {
                "application_name": "luckymoney_bot",
                "jit": "off",
            },
        },
    )


def get_engine() -> AsyncEngine:
    """
    Get (and lazily create) the global async engine

    Returns:
        Configured AsyncEngine instance
    """
    global engine

    if engine is None:
        engine = build_engine(DATABASE_URL)
        logger.info(f"Database engine created - Environment: {ENVIRONMENT}, dialect: {engine.dialect.name}")

    return engine


def make_session_maker(eng: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        eng,
        class_=AsyncSession,
        expire_on_commit=False,  # Important for async!
        autoflush=False,
    )


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Get (and lazily create) the global session maker

    Returns:
        Configured async_sessionmaker instance
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = make_session_maker(get_engine())
        logger.info("Session maker created")

    return AsyncSessionLocal


async def init_db(eng: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables

    WARNING: For production, use Alembic migrations instead.
    """
    eng = eng or get_engine()

    logger.info("Creating database tables...")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")


async def dispose_engine() -> None:
    """
    Dispose database engine and close all connections

    Call this on application shutdown
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None


async def check_connection() -> bool:
    """
    Check database connection

    Returns:
        True if connection successful, False otherwise
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection check: OK")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
