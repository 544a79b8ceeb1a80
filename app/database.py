"""Database utilities for the Discover service."""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits for a competing writer before failing.
SQLITE_BUSY_TIMEOUT = 30


class Base(DeclarativeBase):
    metadata = MetaData()


class Database:
    """Owns the async engine and the session factory shared by the services."""

    def __init__(self, database_url: str):
        connect_args: dict[str, object] = {}
        if database_url.startswith("sqlite"):
            connect_args["timeout"] = SQLITE_BUSY_TIMEOUT
        self._engine = create_async_engine(database_url, connect_args=connect_args)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create the content, genre, fetch log and recommendation tables."""

        # Importing registers the mapped tables on ``Base.metadata``.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info(
            "Database schema ready at %s",
            self._engine.url.render_as_string(hide_password=True),
        )

    async def dispose(self) -> None:
        await self._engine.dispose()
