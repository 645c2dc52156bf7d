"""
Infrastructure package for meterhub.

Centralizes the reading store contract, its PostgreSQL and in-memory
implementations, and database pool management. Keep this layer focused on
I/O and resource management, decoupled from hub and aggregation logic.
"""

from meterhub.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_async_connection,
    open_async_pool,
)
from meterhub.infrastructure.memory_store import InMemoryReadingStore
from meterhub.infrastructure.postgres_store import PostgresReadingStore
from meterhub.infrastructure.store import ReadingStore

__all__ = [
    "PoolManager",
    "build_dsn",
    "get_async_connection",
    "open_async_pool",
    "InMemoryReadingStore",
    "PostgresReadingStore",
    "ReadingStore",
]
