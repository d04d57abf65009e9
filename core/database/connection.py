# Async database connection management
import time
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from contextlib import asynccontextmanager
from typing import AsyncIterator

from core.logging import get_database_logger, get_error_logger

# The base class for all SQLAlchemy models
Base = declarative_base()


class DatabaseManager:
    """Manages the async engine and session factory"""

    def __init__(self, db_url: str, echo: bool = False):
        engine_kwargs = {"echo": echo}
        # SQLite (tests, local runs) uses a static pool that rejects sizing arguments
        if not db_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_pre_ping=True,  # Test connections before use
                pool_size=10,
                max_overflow=20,
                pool_recycle=3600,
            )
        self._engine = create_async_engine(db_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession
        )
        self.logger = get_database_logger("database_manager")
        self.error_logger = get_error_logger("database_manager")

    async def init(self, create_schema: bool = True):
        """Create tables when schema management is left to the application"""
        # Import models so they register with Base.metadata
        from core.database import models  # noqa: F401

        if create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self.logger.info("Database initialized with create_all")

    async def verify_connection(self) -> bool:
        """Verify database connection is ready"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            self.logger.error("Database connection verification failed", error=str(e))
            return False

    async def shutdown(self):
        """Closes the database connection pool"""
        await self._engine.dispose()
        self.logger.info("Database connection pool closed.")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Provides a session WITHOUT auto-commit; callers own the transaction boundary."""
        session_start_time = time.time()
        async with self._session_factory() as session:
            try:
                yield session
            except Exception as session_error:
                await session.rollback()
                self.error_logger.error("Database session error with rollback",
                                        error=str(session_error),
                                        session_duration_ms=(time.time() - session_start_time) * 1000,
                                        exc_info=True)
                raise
