"""
Pytest configuration for meterhub.

Provides fixtures for:
- A fake WebSocket transport for hub and session tests
- In-memory reading store and hub instances
- Settings and DSN for PostgreSQL integration tests
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, List, Optional

import psycopg
import pytest

from meterhub.config import Settings
from meterhub.hub.server import TelemetryHub
from meterhub.infrastructure.memory_store import InMemoryReadingStore


class FakeTransport:
    """
    Records sent frames; pings resolve immediately unless `answer_pings` is off.
    With `stall_send` every send blocks forever, like a peer with a full buffer.
    """

    def __init__(
        self,
        remote: str = "127.0.0.1:50000",
        fail_send: bool = False,
        answer_pings: bool = True,
        stall_send: bool = False,
    ) -> None:
        self.remote = remote
        self.fail_send = fail_send
        self.answer_pings = answer_pings
        self.stall_send = stall_send
        self.open = True
        self.sent: List[str] = []
        self.pings = 0
        self.closed_with: Optional[tuple] = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, data: str) -> None:
        if self.fail_send or not self.open:
            raise ConnectionError("transport is gone")
        if self.stall_send:
            await asyncio.Event().wait()
        self.sent.append(data)

    async def ping(self) -> "asyncio.Future[float]":
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            waiter.set_result(0.0)
        return waiter

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False
        self.closed_with = (code, reason)

    def messages(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        parsed = [json.loads(frame) for frame in self.sent]
        if kind is None:
            return parsed
        return [m for m in parsed if m.get("type") == kind]

    def last(self, kind: Optional[str] = None) -> Dict[str, Any]:
        return self.messages(kind)[-1]


@pytest.fixture
def transport_factory():
    def make(**kwargs: Any) -> FakeTransport:
        return FakeTransport(**kwargs)

    return make


@pytest.fixture
def store() -> InMemoryReadingStore:
    return InMemoryReadingStore()


@pytest.fixture
def hub(store: InMemoryReadingStore) -> TelemetryHub:
    return TelemetryHub(store, default_timezone="UTC", liveness_interval=0.05)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "meterhub_test"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False
