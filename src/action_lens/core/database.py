"""Async database engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from action_lens.models.base import Base

if TYPE_CHECKING:
    from action_lens.core.config import ActionLensConfig


class Database:
    """Async database manager owning the engine and session factory."""

    def __init__(self, config: ActionLensConfig) -> None:
        """Initialize database with configuration.

        Args:
            config: Configuration with database settings.
        """
        self._config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the async engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get the session factory, raising if not initialized."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self._session_factory

    async def connect(self) -> None:
        """Create the async engine and session factory."""
        if self._engine is not None:
            return

        url = self._config.database_url
        if url.startswith("sqlite"):
            self._engine = create_async_engine(url)
        else:
            self._engine = create_async_engine(
                url,
                pool_size=self._config.db_pool_size,
                max_overflow=self._config.db_max_overflow,
                pool_pre_ping=True,
            )
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def disconnect(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def create_schema(self) -> None:
        """Create the action tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Create a new async session context.

        Yields:
            AsyncSession: Database session that auto-closes on exit.
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
