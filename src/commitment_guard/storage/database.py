"""
Async PostgreSQL connection management for shared lock records.

Only used when several guard processes share one episode; a single process
is fine with the JSON file store. Connection pooling with asyncpg, plus retry
with backoff for transient connection errors.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    asyncpg.InterfaceError,
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.ConnectionFailureError,
    ConnectionResetError,
    ConnectionRefusedError,
    OSError,
)


class DatabaseConfig(BaseModel):
    """PostgreSQL database configuration."""

    model_config = ConfigDict(frozen=True)

    url: str
    min_connections: int = 1
    max_connections: int = 4
    command_timeout: float = 30.0

    # Retry settings for transient errors
    retry_max_attempts: int = 3
    retry_initial_delay: float = 0.1
    retry_max_delay: float = 2.0


class Database:
    """
    Async PostgreSQL connection pool.

    Usage:
        db = Database(DatabaseConfig(url=os.environ["LOCK_DATABASE_URL"]))
        await db.initialize()

        row = await db.fetchrow("SELECT record FROM t WHERE id = $1", key)

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO ...")

        await db.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._init_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def initialize(self) -> None:
        """Create the connection pool (idempotent)."""
        async with self._init_lock:
            if self._pool is not None:
                return
            self._pool = await asyncpg.create_pool(
                self.config.url,
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                command_timeout=self.config.command_timeout,
            )
            logger.info(
                f"Database pool initialized "
                f"(min={self.config.min_connections}, max={self.config.max_connections})"
            )

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    async def _drop_pool(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            try:
                await pool.close()
            except _TRANSIENT_ERRORS as e:
                logger.debug(f"Ignoring error while closing broken pool: {e}")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection, re-creating the pool if it was dropped."""
        await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _TRANSIENT_ERRORS as e:
            logger.warning(f"Database connection error: {e}")
            await self._drop_pool()
            raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection with a transaction: commits on success, rolls back on exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def _with_retry(self, operation, *args, **kwargs):
        delay = self.config.retry_initial_delay
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.config.retry_max_attempts + 1):
            try:
                return await operation(*args, **kwargs)
            except _TRANSIENT_ERRORS as e:
                last_error = e
                if attempt < self.config.retry_max_attempts:
                    logger.warning(
                        f"Transient DB error (attempt {attempt}): {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.config.retry_max_delay)

        logger.error(f"DB operation failed after {self.config.retry_max_attempts} attempts")
        raise last_error

    async def execute(self, query: str, *args) -> str:
        """Execute a statement. Retries on transient errors."""
        async def _do_execute():
            async with self.connection() as conn:
                return await conn.execute(query, *args)
        return await self._with_retry(_do_execute)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row. Retries on transient errors."""
        async def _do_fetchrow():
            async with self.connection() as conn:
                return await conn.fetchrow(query, *args)
        return await self._with_retry(_do_fetchrow)
