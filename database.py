"""
Database connection and session management for Identity Reconciliation API
This module sets up the async SQLAlchemy engine and session factory used by
the SQL contact store. Supports local PostgreSQL, AWS RDS (Lambda-tuned pool)
and SQLite through aiosqlite for local runs and tests.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Database connection manager that handles the async SQLAlchemy engine,
    session creation, and connection lifecycle management.
    The engine is created on first use so importing the module never connects.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.get_active_database_url()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def dialect_name(self) -> str:
        return make_url(self.database_url).get_backend_name()

    def _engine_options(self) -> dict:
        """Pool and driver options for the current environment"""
        if self.dialect_name != "postgresql":
            return {"echo": settings.DEBUG}

        if settings.is_lambda_environment():
            # Lambda-optimized settings for RDS Proxy
            return {
                "echo": settings.DEBUG,
                "pool_pre_ping": True,
                "pool_size": 1,
                "max_overflow": 0,
                "pool_recycle": 3600,
                "pool_timeout": 10,
                "connect_args": {
                    "command_timeout": 10,
                    "server_settings": {"application_name": "identity-reconciliation-lambda"},
                },
            }

        return {
            "echo": settings.DEBUG,
            "pool_pre_ping": True,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "connect_args": {
                "server_settings": {"application_name": "identity-reconciliation-local"},
            },
        }

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            logger.info(f"Initializing database connection to: {self.database_url.split('@')[-1]}")
            self._engine = create_async_engine(self.database_url, **self._engine_options())
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,  # records are detached right after commit
                autoflush=False
            )
        return self._session_factory

    async def create_tables(self):
        """Create all database tables defined in models"""
        logger.info("Creating database tables...")
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def test_connection(self) -> bool:
        """Test database connection"""
        try:
            async with self.engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.info("Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    @asynccontextmanager
    async def get_session(self):
        """
        Context manager for database sessions with automatic cleanup
        Usage:
            async with db_manager.get_session() as session:
                # database operations
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception as e:
                await session.rollback()
                logger.error(f"Database session error: {e}")
                raise

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


# Global database manager instance
db_manager = DatabaseManager()
