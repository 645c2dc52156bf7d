"""
30-minute window aggregation.

Turns the raw readings of one producer into per-window energy summaries:

    total_kwh = sum(power_kw) / 60

Each reading is treated as one minute of consumption regardless of the
producer's sampling interval. A window is peak when its local start hour is
in [14, 22). Summaries are always recomputed from the stored readings and
upserted, so running the same window twice gives the same row.

Usage:
    aggregator = WindowAggregator(store, default_timezone="Asia/Kuala_Lumpur")
    result = await aggregator.compute_window(producer, reading.timestamp)
    result.summary  # None when the window holds no readings
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from meterhub.domain.models import Producer, Reading, WindowInfo, WindowSummary
from meterhub.domain.windows import (
    day_bounds,
    is_peak_hour,
    iter_day_windows,
    resolve_timezone,
    to_millis,
    window_bounds,
    window_end,
)
from meterhub.infrastructure.store import ReadingStore
from meterhub.utils.logging import get_logger

log = get_logger(__name__)

MINUTES_PER_HOUR = Decimal(60)


@dataclass(frozen=True)
class WindowStats:
    """Reduction of the readings that fall in one window."""

    total_kwh: Decimal
    avg_power_kw: Decimal
    max_power_kw: Decimal
    min_power_kw: Decimal
    reading_count: int


@dataclass(frozen=True)
class WindowResult:
    """Outcome of aggregating the window that encloses a timestamp."""

    summary: Optional[WindowSummary]
    window: Optional[WindowInfo]


def summarize(readings: Iterable[Reading]) -> Optional[WindowStats]:
    """
    Reduce readings to window statistics, or None when there are none.
    """
    powers = [Decimal(r.power_kw) for r in readings]
    if not powers:
        return None
    total_power = sum(powers, Decimal(0))
    return WindowStats(
        total_kwh=total_power / MINUTES_PER_HOUR,
        avg_power_kw=total_power / len(powers),
        max_power_kw=max(powers),
        min_power_kw=min(powers),
        reading_count=len(powers),
    )


class WindowAggregator:
    """
    Computes and persists window summaries through a `ReadingStore`.

    Parameters
    ----------
    store : ReadingStore
        Source of readings and destination of summaries.
    default_timezone : str
        Zone used for producers that do not carry their own.
    end_inclusive : bool
        Whether a reading stamped exactly on `window_end` belongs to the window.
    """

    def __init__(
        self,
        store: ReadingStore,
        default_timezone: str = "UTC",
        end_inclusive: bool = True,
    ) -> None:
        self.store = store
        self.default_timezone = default_timezone
        self.end_inclusive = end_inclusive

    def timezone_for(self, producer: Producer) -> ZoneInfo:
        return resolve_timezone(producer.timezone or self.default_timezone)

    def window_for(self, producer: Producer, timestamp_ms: int) -> WindowInfo:
        start, end, is_peak = window_bounds(timestamp_ms, self.timezone_for(producer))
        return WindowInfo(start=start, end=end, is_peak=is_peak)

    async def compute_block(self, producer: Producer, start: datetime) -> Optional[WindowSummary]:
        """
        Recompute and upsert the window opened at `start`.

        Returns None, leaving any stored summary untouched, when the window
        holds no readings. Storage errors propagate.
        """
        end = window_end(start)
        readings = await self.store.query_readings_in_range(
            producer.id, to_millis(start), to_millis(end), end_inclusive=self.end_inclusive
        )
        stats = summarize(readings)
        if stats is None:
            return None

        summary = await self.store.upsert_window_summary(
            producer.id,
            start,
            end,
            stats.total_kwh,
            stats.avg_power_kw,
            stats.max_power_kw,
            stats.min_power_kw,
            stats.reading_count,
            is_peak_hour(start, self.timezone_for(producer)),
        )
        log.debug(
            "Window summary upserted",
            extra={
                "device_id": producer.device_id,
                "window_start": start.isoformat(),
                "readings": stats.reading_count,
                "total_kwh": str(stats.total_kwh),
            },
        )
        return summary

    async def compute_window(self, producer: Producer, timestamp_ms: int) -> WindowResult:
        """Aggregate the window enclosing `timestamp_ms` (the reading's own time)."""
        window = self.window_for(producer, timestamp_ms)
        summary = await self.compute_block(producer, window.start)
        return WindowResult(summary=summary, window=window)

    async def compute_current(
        self, producer: Producer, now: Optional[datetime] = None
    ) -> WindowResult:
        """Aggregate the window that is open at `now`."""
        moment = now or datetime.now(timezone.utc)
        return await self.compute_window(producer, to_millis(moment))

    async def compute_day(self, producer: Producer, day: date) -> List[WindowSummary]:
        """
        Recompute every window of a local calendar day, for backfills.

        A window that fails is logged and skipped so the rest of the day still
        gets computed.
        """
        summaries: List[WindowSummary] = []
        for start in iter_day_windows(day, self.timezone_for(producer)):
            try:
                summary = await self.compute_block(producer, start)
            except Exception:  # noqa: BLE001 - one bad window must not stop the backfill
                log.exception(
                    "Window computation failed",
                    extra={"device_id": producer.device_id, "window_start": start.isoformat()},
                )
                continue
            if summary is not None:
                summaries.append(summary)
        log.info(
            "Day recomputed",
            extra={
                "device_id": producer.device_id,
                "day": day.isoformat(),
                "windows": len(summaries),
            },
        )
        return summaries

    def local_today(self, producer: Producer, now: Optional[datetime] = None) -> date:
        moment = now or datetime.now(timezone.utc)
        return moment.astimezone(self.timezone_for(producer)).date()

    async def summaries_for_day(self, producer: Producer, day: date) -> List[WindowSummary]:
        """Stored summaries of a local calendar day, ascending."""
        start, end = day_bounds(day, self.timezone_for(producer))
        return await self.store.query_window_summaries(producer.id, start, end)

    async def recent_completed(
        self, producer: Producer, limit: int, now: Optional[datetime] = None
    ) -> List[WindowSummary]:
        """The `limit` most recent windows that have already ended."""
        moment = now or datetime.now(timezone.utc)
        return await self.store.query_completed_summaries(producer.id, moment, limit)


__all__ = ["WindowAggregator", "WindowResult", "WindowStats", "summarize", "MINUTES_PER_HOUR"]
