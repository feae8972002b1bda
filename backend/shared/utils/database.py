"""
Async PostgreSQL access for the prediction store (SQLAlchemy async + asyncpg).

The store reads pending predictions in a plain session and writes each
settlement in its own transaction, so one failed write never rolls back
another prediction's result.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def engine_options(settings: Settings) -> dict[str, Any]:
    """Pool and driver options for the store's engine."""
    return {
        "pool_size": settings.db_pool_min,
        "max_overflow": max(0, settings.db_pool_max - settings.db_pool_min),
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": settings.debug,
        # asyncpg: connect timeout and per-statement timeout
        "connect_args": {
            "timeout": settings.db_command_timeout,
            "command_timeout": settings.db_command_timeout,
        },
    }


class DatabaseManager:
    """Owns the engine and hands out read or transactional sessions."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def connected(self) -> bool:
        return self._session_factory is not None

    async def connect(self) -> None:
        self._engine = create_async_engine(self._settings.database_url_str, **engine_options(self._settings))
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_connected", url=self._settings.database_url_safe_log)

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("database_disconnected")

    async def ping(self) -> bool:
        """Round-trip SELECT 1 within the command timeout; False when not connected."""
        if not self.connected:
            return False
        async with self.read_session() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=self._settings.db_command_timeout)
        return True

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._session_factory

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """Session without commit, for selects."""
        async with self._factory()() as session:
            yield session

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and rolls back on any exception."""
        async with self._factory()() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise
