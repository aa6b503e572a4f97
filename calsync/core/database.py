"""
Database service for the calendar sync queue
Async SQLAlchemy engine and session management
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, Any

from sqlalchemy import text, inspect
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from calsync.core.models import Base

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/calsync.db"

REQUIRED_TABLES = ('sync_queue', 'calendar_integrations', 'event_syncs', 'events')


class DatabaseService:
    """Async database service; one instance is constructed per application and injected"""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        self.database_url = database_url
        self.logger = logging.getLogger(__name__)

        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite"):
            if ":memory:" in database_url:
                # A single shared connection keeps the in-memory database alive
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
            else:
                self._ensure_sqlite_directory(database_url)
                engine_kwargs["connect_args"] = {"timeout": 30}

        self.engine = create_async_engine(database_url, **engine_kwargs)

        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self.logger.info(f"Database service initialized: {database_url}")

    @staticmethod
    def _ensure_sqlite_directory(database_url: str):
        db_file = database_url.split(":///", 1)[-1]
        if db_file:
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)

    async def create_tables(self):
        """Create tables using SQLAlchemy directly"""
        self.logger.info("Creating tables using SQLAlchemy...")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self.logger.info("All tables created successfully")
        except Exception as e:
            self.logger.error(f"Error creating tables: {e}")
            raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session; commits on success, rolls back on error"""
        async with self.SessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> bool:
        """Check database connection health and that the queue tables exist"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

            missing = [name for name in REQUIRED_TABLES if name not in tables]
            if missing:
                self.logger.warning(f"Missing tables: {missing}")
                return False
            return True
        except Exception as e:
            self.logger.error(f"Database health check failed: {e}")
            return False

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()
        self.logger.info("Database connections closed")
