"""
Reading store contract.

The hub and the window aggregator depend only on the `ReadingStore` protocol.
Two implementations ship with meterhub: `PostgresReadingStore` (psycopg async
pool) and `InMemoryReadingStore` (single process, used by tests and the
`--memory` serve mode). Both keep the same uniqueness and upsert semantics.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Protocol, runtime_checkable

from meterhub.domain.models import Producer, Reading, WindowSummary

# Producer attributes that may be changed after creation.
MUTABLE_PRODUCER_FIELDS = frozenset(
    {
        "display_name",
        "sampling_interval",
        "alert_threshold_kwh",
        "alert_destination",
        "timezone",
    }
)


@runtime_checkable
class ReadingStore(Protocol):
    """
    Persistence operations required by the telemetry hub.

    All methods raise `meterhub.errors.StorageError` (or a subclass) when the
    underlying store fails.
    """

    async def upsert_producer(
        self, device_id: str, is_synthetic: bool, display_name: Optional[str] = None
    ) -> Producer:
        """
        Create the producer or touch its `updated_at`.

        A non-empty `display_name` replaces the stored one; `is_synthetic` is
        only applied on creation.
        """
        ...

    async def get_producer(self, device_id: str) -> Optional[Producer]:
        ...

    async def list_producers(self) -> List[Producer]:
        """All producers, most recently created first."""
        ...

    async def update_producer(self, producer_id: int, **changes: Any) -> Producer:
        """Apply changes restricted to `MUTABLE_PRODUCER_FIELDS`."""
        ...

    async def append_reading(
        self,
        producer_id: int,
        timestamp_ms: int,
        power_kw: Decimal,
        frequency: Optional[Decimal] = None,
        sampling_interval: int = 60,
    ) -> Reading:
        ...

    async def query_readings_in_range(
        self, producer_id: int, start_ms: int, end_ms: int, end_inclusive: bool = True
    ) -> List[Reading]:
        """Readings with `start_ms <= timestamp <= end_ms` (or `<` when not inclusive), ascending."""
        ...

    async def latest_reading(self, producer_id: int) -> Optional[Reading]:
        ...

    async def upsert_window_summary(
        self,
        producer_id: int,
        window_start: datetime,
        window_end: datetime,
        total_kwh: Decimal,
        avg_power_kw: Decimal,
        max_power_kw: Decimal,
        min_power_kw: Decimal,
        reading_count: int,
        is_peak: bool,
    ) -> WindowSummary:
        """
        Insert or overwrite the summary for (producer, window_start).

        On conflict only the totals and the reading count are replaced;
        `window_end` and `is_peak` keep their first-written values.
        """
        ...

    async def query_window_summaries(
        self, producer_id: int, start: datetime, end: datetime
    ) -> List[WindowSummary]:
        """Summaries with `start <= window_start < end`, ascending."""
        ...

    async def query_completed_summaries(
        self, producer_id: int, now: datetime, limit: int
    ) -> List[WindowSummary]:
        """Up to `limit` summaries whose window ended by `now`, newest first."""
        ...

    async def purge_synthetic_producers(self) -> int:
        """Delete synthetic producers with their readings and summaries; return the count."""
        ...

    async def close(self) -> None:
        ...


__all__ = ["ReadingStore", "MUTABLE_PRODUCER_FIELDS"]
