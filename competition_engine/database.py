"""
competition_engine/database.py
Async database engine, session factory and lifecycle helpers
"""
import os
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from dotenv import load_dotenv

from competition_engine.orm.base import Base
import competition_engine.orm  # registers every model on Base.metadata

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./competitions.db")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(url: str):
    """Create an async engine with pool settings suited to the backend."""
    if "sqlite" in url.lower():
        return create_async_engine(
            url,
            echo=False,
            future=True,
            connect_args={
                "timeout": 30.0,   # SQLite busy timeout in seconds
            }
        )
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,      # Recycle connections after 1 hour
    )


def build_session_factory(bind):
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory():
    """Dependency returning the session factory used by background readers."""
    return AsyncSessionLocal


async def init_db():
    """Create any missing tables."""
    logger.info("Initializing database...")

    try:
        logger.info(f"Database dialect: {engine.url.get_backend_name()}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialization complete")

    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
