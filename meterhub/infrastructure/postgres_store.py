"""
PostgreSQL implementation of the reading store.

Every operation borrows a connection from the shared psycopg async pool; the
pool commits when the connection is returned. Rows are fetched with
`dict_row` and validated into the domain models.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from importlib import resources
from typing import Any, List, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from meterhub.domain.models import Producer, Reading, WindowSummary
from meterhub.errors import StorageError, UnknownProducer
from meterhub.infrastructure.store import MUTABLE_PRODUCER_FIELDS
from meterhub.utils.logging import get_logger

log = get_logger(__name__)

_READING_COLUMNS = (
    "id, meter_id AS producer_id, timestamp, power_kw, frequency, sampling_interval, created_at"
)
_SUMMARY_COLUMNS = (
    "id, meter_id AS producer_id, window_start, window_end, total_kwh, avg_power_kw, "
    "max_power_kw, min_power_kw, reading_count, is_peak, created_at, updated_at"
)


def load_schema_sql() -> str:
    """Return the DDL shipped with the package."""
    return resources.files("meterhub.infrastructure").joinpath("schema.sql").read_text("utf-8")


class PostgresReadingStore:
    """
    `ReadingStore` backed by the `meters`, `energy_readings` and
    `window_summaries` tables.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def _fetch(self, query: Any, params: Optional[Sequence[Any]] = None) -> List[dict]:
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    if cur.description is None:
                        return []
                    return await cur.fetchall()
        except psycopg.errors.ForeignKeyViolation as exc:
            raise UnknownProducer(str(exc)) from exc
        except psycopg.Error as exc:
            log.error("Reading store query failed", extra={"error": str(exc)})
            raise StorageError(str(exc)) from exc

    async def _fetch_one(self, query: Any, params: Optional[Sequence[Any]] = None) -> Optional[dict]:
        rows = await self._fetch(query, params)
        return rows[0] if rows else None

    async def apply_schema(self) -> None:
        """Create tables, indexes and triggers if they do not exist."""
        await self._fetch(load_schema_sql())

    async def upsert_producer(
        self, device_id: str, is_synthetic: bool, display_name: Optional[str] = None
    ) -> Producer:
        row = await self._fetch_one(
            """
            INSERT INTO meters (device_id, is_synthetic, display_name)
            VALUES (%s, %s, NULLIF(%s, ''))
            ON CONFLICT (device_id) DO UPDATE SET
              updated_at = NOW(),
              display_name = COALESCE(EXCLUDED.display_name, meters.display_name)
            RETURNING *
            """,
            (device_id, is_synthetic, display_name),
        )
        return Producer.model_validate(row)

    async def get_producer(self, device_id: str) -> Optional[Producer]:
        row = await self._fetch_one("SELECT * FROM meters WHERE device_id = %s", (device_id,))
        return Producer.model_validate(row) if row else None

    async def list_producers(self) -> List[Producer]:
        rows = await self._fetch("SELECT * FROM meters ORDER BY created_at DESC, id DESC")
        return [Producer.model_validate(row) for row in rows]

    async def update_producer(self, producer_id: int, **changes: Any) -> Producer:
        unknown = set(changes) - MUTABLE_PRODUCER_FIELDS
        if unknown:
            raise StorageError(f"cannot update producer fields: {sorted(unknown)}")
        if not changes:
            row = await self._fetch_one("SELECT * FROM meters WHERE id = %s", (producer_id,))
        else:
            assignments = sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(name)) for name in changes
            )
            query = sql.SQL("UPDATE meters SET {} WHERE id = %s RETURNING *").format(assignments)
            row = await self._fetch_one(query, (*changes.values(), producer_id))
        if row is None:
            raise UnknownProducer(f"producer {producer_id} does not exist")
        return Producer.model_validate(row)

    async def append_reading(
        self,
        producer_id: int,
        timestamp_ms: int,
        power_kw: Decimal,
        frequency: Optional[Decimal] = None,
        sampling_interval: int = 60,
    ) -> Reading:
        row = await self._fetch_one(
            f"""
            INSERT INTO energy_readings (meter_id, timestamp, power_kw, frequency, sampling_interval)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_READING_COLUMNS}
            """,
            (producer_id, timestamp_ms, power_kw, frequency, sampling_interval),
        )
        return Reading.model_validate(row)

    async def query_readings_in_range(
        self, producer_id: int, start_ms: int, end_ms: int, end_inclusive: bool = True
    ) -> List[Reading]:
        upper = "<=" if end_inclusive else "<"
        rows = await self._fetch(
            f"""
            SELECT {_READING_COLUMNS} FROM energy_readings
            WHERE meter_id = %s AND timestamp >= %s AND timestamp {upper} %s
            ORDER BY timestamp ASC, id ASC
            """,
            (producer_id, start_ms, end_ms),
        )
        return [Reading.model_validate(row) for row in rows]

    async def latest_reading(self, producer_id: int) -> Optional[Reading]:
        row = await self._fetch_one(
            f"""
            SELECT {_READING_COLUMNS} FROM energy_readings
            WHERE meter_id = %s
            ORDER BY timestamp DESC, id DESC
            LIMIT 1
            """,
            (producer_id,),
        )
        return Reading.model_validate(row) if row else None

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
        row = await self._fetch_one(
            f"""
            INSERT INTO window_summaries
              (meter_id, window_start, window_end, total_kwh, avg_power_kw,
               max_power_kw, min_power_kw, reading_count, is_peak)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (meter_id, window_start) DO UPDATE SET
              total_kwh = EXCLUDED.total_kwh,
              avg_power_kw = EXCLUDED.avg_power_kw,
              max_power_kw = EXCLUDED.max_power_kw,
              min_power_kw = EXCLUDED.min_power_kw,
              reading_count = EXCLUDED.reading_count
            RETURNING {_SUMMARY_COLUMNS}
            """,
            (
                producer_id,
                window_start,
                window_end,
                total_kwh,
                avg_power_kw,
                max_power_kw,
                min_power_kw,
                reading_count,
                is_peak,
            ),
        )
        return WindowSummary.model_validate(row)

    async def query_window_summaries(
        self, producer_id: int, start: datetime, end: datetime
    ) -> List[WindowSummary]:
        rows = await self._fetch(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM window_summaries
            WHERE meter_id = %s AND window_start >= %s AND window_start < %s
            ORDER BY window_start ASC
            """,
            (producer_id, start, end),
        )
        return [WindowSummary.model_validate(row) for row in rows]

    async def query_completed_summaries(
        self, producer_id: int, now: datetime, limit: int
    ) -> List[WindowSummary]:
        rows = await self._fetch(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM window_summaries
            WHERE meter_id = %s AND window_end <= %s
            ORDER BY window_start DESC
            LIMIT %s
            """,
            (producer_id, now, limit),
        )
        return [WindowSummary.model_validate(row) for row in rows]

    async def purge_synthetic_producers(self) -> int:
        # Readings and summaries go with the meter through ON DELETE CASCADE.
        rows = await self._fetch("DELETE FROM meters WHERE is_synthetic = TRUE RETURNING id")
        return len(rows)

    async def close(self) -> None:
        await self._pool.close()


__all__ = ["PostgresReadingStore", "load_schema_sql"]
