"""
Database manager for HealthChain Notify.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, Any, Optional

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from .models import Base, TemplateRecord, NotificationRecord, DispatchJobRecord

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Database operation error."""

    pass


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to datetimes read back from backends that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class DatabaseManager:
    """Manages database connections for HealthChain Notify."""

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy async database URL
            echo: Echo SQL statements
        """
        self.database_url = database_url
        self.echo = echo
        self.engine = None
        self.async_session_factory = None
        self._is_initialized = False

    async def initialize(self) -> None:
        """Initialize database connection and create tables."""
        if self._is_initialized:
            return

        try:
            if self.database_url.startswith("sqlite") and ":///" in self.database_url:
                db_path = self.database_url.split(":///", 1)[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
                pool_pre_ping=True,
                pool_recycle=3600,  # Recycle connections every hour
            )

            self.async_session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._is_initialized = True
            logger.info(f"Database initialized: {self.database_url}")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(f"Database initialization failed: {e}") from e

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            self._is_initialized = False
            logger.info("Database connections closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session, translating SQLAlchemy failures into DatabaseError."""
        if not self._is_initialized:
            raise DatabaseError("Database not initialized")
        async with self.async_session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database operation failed: {e}")
                raise DatabaseError(f"Database operation failed: {e}") from e

    async def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except DatabaseError:
            return False

    async def get_database_stats(self) -> Dict[str, Any]:
        """Row counts per table."""
        async with self.session() as session:
            stats = {}
            for name, model in (
                ("templates", TemplateRecord),
                ("notifications", NotificationRecord),
                ("dispatch_jobs", DispatchJobRecord),
            ):
                result = await session.execute(select(func.count()).select_from(model))
                stats[name] = result.scalar_one()
            return stats
