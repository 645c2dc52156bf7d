"""
In-process implementation of the reading store.

Mirrors the PostgreSQL schema: decimals are quantized to the column scales,
producer names are unique, and summaries are unique per (producer, window).
Everything lives on the event loop thread, so no locking is needed.
"""

from __future__ import annotations

import bisect
import itertools
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from meterhub.domain.models import Producer, Reading, WindowSummary
from meterhub.errors import StorageError, UnknownProducer
from meterhub.infrastructure.store import MUTABLE_PRODUCER_FIELDS

_KW = Decimal("0.01")
_KWH = Decimal("0.0001")


def _quantize(value: Optional[Decimal], scale: Decimal) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(value).quantize(scale, rounding=ROUND_HALF_UP)


class InMemoryReadingStore:
    """
    Dictionary-backed `ReadingStore`.

    Parameters
    ----------
    clock : callable | None
        Returns the current aware datetime; defaults to UTC wall clock.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._producers: Dict[int, Producer] = {}
        self._by_name: Dict[str, int] = {}
        # producer id -> readings sorted by (timestamp, id)
        self._readings: Dict[int, List[Reading]] = {}
        self._summaries: Dict[Tuple[int, datetime], WindowSummary] = {}
        self._producer_ids = itertools.count(1)
        self._reading_ids = itertools.count(1)
        self._summary_ids = itertools.count(1)
        self.closed = False

    def _require(self, producer_id: int) -> Producer:
        try:
            return self._producers[producer_id]
        except KeyError:
            raise UnknownProducer(f"producer {producer_id} does not exist") from None

    async def upsert_producer(
        self, device_id: str, is_synthetic: bool, display_name: Optional[str] = None
    ) -> Producer:
        now = self._clock()
        existing_id = self._by_name.get(device_id)
        if existing_id is None:
            producer = Producer(
                id=next(self._producer_ids),
                device_id=device_id,
                display_name=display_name or None,
                is_synthetic=is_synthetic,
                created_at=now,
                updated_at=now,
            )
            self._by_name[device_id] = producer.id
        else:
            current = self._producers[existing_id]
            changes: Dict[str, Any] = {"updated_at": now}
            if display_name:
                changes["display_name"] = display_name
            producer = current.model_copy(update=changes)
        self._producers[producer.id] = producer
        return producer

    async def get_producer(self, device_id: str) -> Optional[Producer]:
        producer_id = self._by_name.get(device_id)
        return self._producers.get(producer_id) if producer_id is not None else None

    async def list_producers(self) -> List[Producer]:
        return sorted(
            self._producers.values(), key=lambda p: (p.created_at, p.id), reverse=True
        )

    async def update_producer(self, producer_id: int, **changes: Any) -> Producer:
        unknown = set(changes) - MUTABLE_PRODUCER_FIELDS
        if unknown:
            raise StorageError(f"cannot update producer fields: {sorted(unknown)}")
        current = self._require(producer_id)
        if "alert_threshold_kwh" in changes:
            changes["alert_threshold_kwh"] = _quantize(changes["alert_threshold_kwh"], _KWH)
        producer = current.model_copy(update={**changes, "updated_at": self._clock()})
        self._producers[producer_id] = producer
        return producer

    async def append_reading(
        self,
        producer_id: int,
        timestamp_ms: int,
        power_kw: Decimal,
        frequency: Optional[Decimal] = None,
        sampling_interval: int = 60,
    ) -> Reading:
        self._require(producer_id)
        reading = Reading(
            id=next(self._reading_ids),
            producer_id=producer_id,
            timestamp=timestamp_ms,
            power_kw=_quantize(power_kw, _KW),
            frequency=_quantize(frequency, _KW),
            sampling_interval=sampling_interval,
            created_at=self._clock(),
        )
        bisect.insort(
            self._readings.setdefault(producer_id, []),
            reading,
            key=lambda r: (r.timestamp, r.id),
        )
        return reading

    async def query_readings_in_range(
        self, producer_id: int, start_ms: int, end_ms: int, end_inclusive: bool = True
    ) -> List[Reading]:
        readings = self._readings.get(producer_id, [])
        keys = [r.timestamp for r in readings]
        lo = bisect.bisect_left(keys, start_ms)
        hi = bisect.bisect_right(keys, end_ms) if end_inclusive else bisect.bisect_left(keys, end_ms)
        return list(readings[lo:hi])

    async def latest_reading(self, producer_id: int) -> Optional[Reading]:
        readings = self._readings.get(producer_id)
        return readings[-1] if readings else None

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
        self._require(producer_id)
        now = self._clock()
        key = (producer_id, window_start)
        values = {
            "total_kwh": _quantize(total_kwh, _KWH),
            "avg_power_kw": _quantize(avg_power_kw, _KW),
            "max_power_kw": _quantize(max_power_kw, _KW),
            "min_power_kw": _quantize(min_power_kw, _KW),
            "reading_count": reading_count,
            "updated_at": now,
        }
        existing = self._summaries.get(key)
        if existing is None:
            summary = WindowSummary(
                id=next(self._summary_ids),
                producer_id=producer_id,
                window_start=window_start,
                window_end=window_end,
                is_peak=is_peak,
                created_at=now,
                **values,
            )
        else:
            summary = existing.model_copy(update=values)
        self._summaries[key] = summary
        return summary

    async def query_window_summaries(
        self, producer_id: int, start: datetime, end: datetime
    ) -> List[WindowSummary]:
        matches = [
            s
            for (pid, window_start), s in self._summaries.items()
            if pid == producer_id and start <= window_start < end
        ]
        return sorted(matches, key=lambda s: s.window_start)

    async def query_completed_summaries(
        self, producer_id: int, now: datetime, limit: int
    ) -> List[WindowSummary]:
        matches = [
            s
            for (pid, _), s in self._summaries.items()
            if pid == producer_id and s.window_end <= now
        ]
        matches.sort(key=lambda s: s.window_start, reverse=True)
        return matches[:limit]

    async def purge_synthetic_producers(self) -> int:
        doomed = [p for p in self._producers.values() if p.is_synthetic]
        for producer in doomed:
            del self._producers[producer.id]
            del self._by_name[producer.device_id]
            self._readings.pop(producer.id, None)
        doomed_ids = {p.id for p in doomed}
        for key in [k for k in self._summaries if k[0] in doomed_ids]:
            del self._summaries[key]
        return len(doomed)

    async def close(self) -> None:
        self.closed = True


__all__ = ["InMemoryReadingStore"]
