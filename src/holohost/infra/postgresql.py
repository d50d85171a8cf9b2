"""Database engine and session management."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from holohost.config import DatabaseConfig
from holohost.infra import models  # noqa: F401  (registers tables)
from holohost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._config.url
        options: dict = {"echo": self._config.echo}
        if url.startswith("postgresql"):
            options.update(pool_size=5, max_overflow=10, pool_recycle=3600, pool_pre_ping=True)

        self._engine = create_async_engine(url, **options)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        try:
            async with self._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                if self._config.create_tables:
                    await conn.run_sync(SQLModel.metadata.create_all)
            logger.info(
                "Database connected",
                extra={"event": LogEvent.DB_CONNECTED, "dialect": self._engine.dialect.name},
            )
        except Exception as e:
            logger.error(
                "Database connection failed",
                extra={
                    "event": LogEvent.DB_ERROR,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            raise

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized")
        return self._session_factory
