"""
Database connection factory utilities for meterhub.

Provides centralized management of the async PostgreSQL pool used by the
reading store. The PoolManager singleton owns the pool so the hub, the
backfill command and the seeding script share one lifecycle.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import threading
from typing import Optional

import psycopg
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from meterhub.config import get_settings
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


class PoolManager:
    """
    Singleton owning the asynchronous connection pool.

    The pool is created lazily and opened with retries; `close` releases it so
    a later `open_pool` call starts fresh.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool = None
            return cls._instance

    def get_pool(
        self,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        dsn: Optional[str] = None,
    ) -> AsyncConnectionPool:
        """
        Get or create the (unopened) asynchronous connection pool.

        Parameters
        ----------
        min_size : int | None
            Minimum number of idle connections to keep. Defaults to settings.
        max_size : int | None
            Maximum total connections in the pool. Defaults to settings.
        dsn : str | None
            Connection string override; defaults to the DSN built from settings.
        """
        with self._lock:
            if self._pool is None:
                settings = get_settings()
                self._pool = AsyncConnectionPool(
                    conninfo=dsn or build_dsn(),
                    min_size=min_size or settings.db_pool_min_size,
                    max_size=max_size or settings.db_pool_max_size,
                    open=False,
                )
            return self._pool

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((psycopg.OperationalError, OSError)),
        reraise=True,
    )
    async def open_pool(self, dsn: Optional[str] = None) -> AsyncConnectionPool:
        """
        Open the pool, retrying up to 3 times with exponential backoff.

        Raises
        ------
        psycopg.OperationalError
            If the database stays unreachable after all attempts.
        """
        pool = self.get_pool(dsn=dsn)
        try:
            await pool.open(wait=True, timeout=10.0)
        except psycopg.OperationalError:
            # A half-opened pool would swallow the next attempt.
            await self.close()
            raise
        log.info("Database pool opened", extra={"min_size": pool.min_size, "max_size": pool.max_size})
        return pool

    async def close(self) -> None:
        """Close the managed pool and forget it."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            log.info("Database pool closed")


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, OSError)),
    reraise=True,
)
async def get_async_connection(dsn: Optional[str] = None) -> AsyncConnection:
    """
    Acquire a dedicated asynchronous connection with automatic retry.

    Use this for one-off operations such as applying the schema.
    """
    return await AsyncConnection.connect(dsn or build_dsn())


async def open_async_pool(dsn: Optional[str] = None) -> AsyncConnectionPool:
    """Open (or return) the managed async pool via PoolManager."""
    return await PoolManager().open_pool(dsn=dsn)


__all__ = [
    "PoolManager",
    "build_dsn",
    "get_async_connection",
    "open_async_pool",
]
