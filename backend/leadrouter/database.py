"""Database connection and session management."""

import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from leadrouter.config import settings

logger = logging.getLogger(__name__)

# Convert postgresql:// to postgresql+asyncpg://
database_url = settings.DATABASE_URL.replace(
    "postgresql://", "postgresql+asyncpg://"
)

# Create async engine
engine = create_async_engine(
    database_url,
    echo=settings.LOG_LEVEL == "DEBUG",
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)

# Base class for models
Base = declarative_base()


async def init_db():
    """Create tables and install the routing stored procedures."""
    # Models must be registered on Base before create_all
    from leadrouter import models  # noqa: F401
    from leadrouter.routing_functions import install_routing_functions

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if settings.INSTALL_ROUTING_FUNCTIONS:
            await install_routing_functions(conn)

    logger.info("Database initialized (tables + routing functions)")
