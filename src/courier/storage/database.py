"""Database connection and session management.

Example:
    ```python
    from courier.storage import Database

    async with Database("sqlite+aiosqlite:///./courier.db") as db:
        async with db.session() as session:
            ...
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager, nullcontext
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, InvalidRequestError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from courier.config import settings as default_settings
from courier.exceptions import ConfigurationError, StorageError
from courier.logging import get_logger

from .retry import is_transient_db_error
from .tables import Base

logger = get_logger(__name__)


class Database:
    """Owns the async engine and hands out transactional sessions.

    Every ``session()`` block is one transaction: committed when the block
    exits normally, rolled back when it raises. SQLAlchemy errors are
    re-raised as StorageError with ``transient`` set for retryable failures.

    An in-memory SQLite database lives on a single shared connection, so its
    sessions are run one at a time.
    """

    def __init__(self, url: str | None = None, echo: bool | None = None) -> None:
        """Initialize the database manager.

        Args:
            url: SQLAlchemy async URL. Defaults to settings.database_url.
            echo: Log SQL statements. Defaults to settings.database_echo.

        Raises:
            ConfigurationError: If the URL cannot be parsed.
        """
        self._url = url or default_settings.database_url
        self._echo = default_settings.database_echo if echo is None else echo
        try:
            parsed = make_url(self._url)
        except ArgumentError as e:
            raise ConfigurationError(f"Invalid database URL: {e}") from e

        self._in_memory = parsed.get_backend_name() == "sqlite" and (
            parsed.database in (None, "", ":memory:") or parsed.query.get("mode") == "memory"
        )
        self._lock: asyncio.Lock | None = asyncio.Lock() if self._in_memory else None
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def in_memory(self) -> bool:
        return self._in_memory

    def _exclusive(self) -> AbstractAsyncContextManager[Any]:
        return self._lock if self._lock is not None else nullcontext()

    def _engine_options(self) -> dict[str, Any]:
        if self._url.startswith("sqlite"):
            options: dict[str, Any] = {"connect_args": {"timeout": 30}}
            if self._in_memory:
                options["poolclass"] = StaticPool
            return options
        return {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }

    async def initialize(self, create_schema: bool = True) -> None:
        """Create the engine and, optionally, the schema.

        Raises:
            ConfigurationError: If the URL names an unknown or non-async driver.
        """
        if self._engine is not None:
            return

        try:
            self._engine = create_async_engine(
                self._url, echo=self._echo, **self._engine_options()
            )
        except (ArgumentError, InvalidRequestError) as e:
            raise ConfigurationError(f"Unusable database URL {self._url!r}: {e}") from e
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        if create_schema:
            await self.create_schema()

        logger.info("Database initialized", dialect=self._engine.dialect.name)

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            async with self._exclusive(), self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Schema creation failed: {e}") from e

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    async def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        if self._engine is None:
            return False
        try:
            async with self._exclusive(), self._engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except SQLAlchemyError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session wrapped in a single transaction.

        Usage:
            async with database.session() as session:
                await session.execute(...)
        """
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        try:
            async with self._exclusive(), self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            transient = is_transient_db_error(e)
            logger.warning("Database operation failed", error=str(e), transient=transient)
            raise StorageError(str(e), transient=transient) from e

    async def __aenter__(self) -> Database:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
