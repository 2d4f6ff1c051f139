"""
PostgreSQL Database Connection and Session Management

This module handles database connectivity using SQLAlchemy with asyncpg driver
for async PostgreSQL operations.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
import logging

from owlface.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW

logger = logging.getLogger(__name__)

# Shared by the repository and the startup connectivity check
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_size=DB_POOL_SIZE,
    max_overflow=DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

# One session per repository call
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Metadata holder for the targets table
Base = declarative_base()


async def init_db():
    """Verify connectivity and create the targets table if it is missing."""
    # Register models on Base.metadata
    from owlface import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection established successfully")

            await conn.run_sync(Base.metadata.create_all)
        logger.info("'targets' table is ready")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """Close database connection pool."""
    await engine.dispose()
    logger.info("Database connection pool closed")
