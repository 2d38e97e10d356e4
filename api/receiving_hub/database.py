# receiving_hub/database.py
"""
Database connection for Receiving Hub.

Uses SQLAlchemy 2.0 async with the asyncpg driver (aiosqlite in tests).
The engine lives on a ``Database`` object built at app startup and kept on
``app.state.db``; nothing here is module-global.
"""
from __future__ import annotations
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from sqlalchemy import text

from receiving_hub.settings import Settings

# ============================================================================
# Base class for all ORM models
# ============================================================================

class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# ============================================================================
# Engine and Session Factory
# ============================================================================

class Database:
    """Owns one async engine and its session factory."""

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.url = url
        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            # SQLite has no server-side pool to size; aiosqlite connections are loop-bound
            engine_kwargs["connect_args"] = {"timeout": 30}
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,  # Verify connections before use
            )
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            echo=settings.DB_ECHO,  # Log SQL queries if DEBUG
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database session (for use outside FastAPI).

        Usage:
            async with db.session() as session:
                result = await session.execute(...)
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        # models must be imported so their tables are registered on Base.metadata
        from receiving_hub import db_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        from receiving_hub import db_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        """Close database connections."""
        await self.engine.dispose()

    # ========================================================================
    # Health Check
    # ========================================================================

    async def check_health(self) -> dict:
        """Check database connectivity and return status."""
        try:
            async with self.session() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            return {"status": "unhealthy", "database": "disconnected", "error": str(e)}


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI - provides database session.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_session)):
            ...
    """
    database: Database = request.app.state.db
    async with database.session() as session:
        yield session


# ============================================================================
# Transaction Helpers
# ============================================================================

@asynccontextmanager
async def transaction(session: AsyncSession):
    """
    Explicit transaction context for state-changing operations.

    Usage:
        async with transaction(db):
            await db.execute(...)
            await db.execute(...)
        # Commits on success, rolls back on exception
    """
    try:
        yield
        await session.commit()
    except Exception:
        await session.rollback()
        raise
