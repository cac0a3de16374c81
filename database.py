"""
Database Configuration and Session Management
============================================

This module provides the async database engine, session factory, and table
creation functionality for the Payment Gateway. A single Database instance is
created at process start and shared by every request.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional
from sqlalchemy import text, inspect
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, isolation_level: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine with every connection pinned to the given isolation level"""
    engine_kwargs: Dict[str, Any] = {
        "isolation_level": isolation_level,
        "pool_pre_ping": True,    # Validate connections before use
        "echo": echo,
    }

    if database_url.startswith("postgresql+asyncpg://"):
        engine_kwargs.update(
            pool_size=Config.DB_POOL_SIZE,
            max_overflow=Config.DB_MAX_OVERFLOW,
            pool_recycle=3600,     # Recycle connections every hour
            pool_timeout=30,       # Wait max 30 seconds for connection during bursts
            connect_args={
                "server_settings": {
                    "application_name": "payment_gateway",  # For monitoring in pg_stat_activity
                },
                "timeout": 10,  # Connection timeout
                "command_timeout": 30,  # Command execution timeout
            },
        )
    elif database_url.startswith("sqlite"):
        # SQLite waits on the database lock instead of failing immediately
        engine_kwargs["connect_args"] = {"timeout": 30}

    return create_async_engine(database_url, **engine_kwargs)


class Database:
    """Process-scoped relational store: engine plus session factory"""

    def __init__(
        self,
        database_url: Optional[str] = None,
        isolation_level: Optional[str] = None,
        echo: Optional[bool] = None,
    ):
        self.database_url = database_url or Config.async_database_url()
        self.isolation_level = isolation_level or Config.DB_ISOLATION_LEVEL
        self.engine = build_engine(
            self.database_url,
            self.isolation_level,
            echo=Config.DB_ECHO if echo is None else echo,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,  # Returned ORM objects stay readable after commit
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        One database transaction.

        Commits when the block exits normally, rolls back and re-raises on any
        exception. Commit-time failures (serialization failures are often
        reported at COMMIT) are raised from the block's exit.
        """
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Read-only style session without an explicit transaction block"""
        async with self.session_factory() as session:
            yield session

    async def create_tables(self) -> bool:
        """Create all database tables if they don't exist"""
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")

        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all, checkfirst=True)
            existing_tables = await connection.run_sync(
                lambda sync_connection: inspect(sync_connection).get_table_names()
            )

        logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
        logger.info(f"📋 Tables: {', '.join(sorted(existing_tables))}")
        return True

    async def test_connection(self) -> bool:
        """Test database connection"""
        try:
            async with self.engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"❌ Database connection test failed: {e}")
            return False

    async def dispose(self) -> None:
        """Close every pooled connection"""
        await self.engine.dispose()
        logger.info("🔌 Database engine disposed")
