"""
Peak-window demand alerts.

When a peak window's running total crosses the producer's configured
threshold, the notifier is called once for that (producer, window). Delivery
itself (SMS, chat, e-mail) lives behind the `Notifier` protocol; the bundled
`LoggingNotifier` only records the alert.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from meterhub.domain.models import Producer, WindowSummary
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class PeakAlert:
    device_id: str
    destination: Optional[str]
    window_start: datetime
    window_end: datetime
    total_kwh: Decimal
    threshold_kwh: Decimal


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, alert: PeakAlert) -> None:
        ...


class LoggingNotifier:
    """Notifier that writes alerts to the log."""

    async def notify(self, alert: PeakAlert) -> None:
        log.warning(
            f"[PEAK ALERT] {alert.device_id} used {alert.total_kwh} kWh "
            f"(target {alert.threshold_kwh} kWh)",
            extra={
                "device_id": alert.device_id,
                "destination": alert.destination,
                "window_start": alert.window_start.isoformat(),
            },
        )


class AlertTracker:
    """
    Remembers, per producer, the last window that already raised an alert.

    A newer window replaces the producer's entry, so the map holds at most one
    window per producer; producers beyond `max_producers` are evicted least
    recently alerted first.
    """

    def __init__(self, notifier: Notifier, max_producers: int = 1024) -> None:
        self.notifier = notifier
        self.max_producers = max_producers
        self._alerted: "OrderedDict[int, datetime]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._alerted)

    def already_alerted(self, producer_id: int, window_start: datetime) -> bool:
        return self._alerted.get(producer_id) == window_start

    def _remember(self, producer_id: int, window_start: datetime) -> None:
        self._alerted[producer_id] = window_start
        self._alerted.move_to_end(producer_id)
        while len(self._alerted) > self.max_producers:
            self._alerted.popitem(last=False)

    def forget(self, producer_id: int) -> None:
        self._alerted.pop(producer_id, None)

    async def check(self, producer: Producer, summary: Optional[WindowSummary]) -> Optional[PeakAlert]:
        """
        Raise an alert if `summary` is a peak window over the producer's threshold.

        Returns the alert that was sent, or None.
        """
        threshold = producer.alert_threshold_kwh
        if summary is None or threshold is None or not summary.is_peak:
            return None

        last = self._alerted.get(producer.id)
        if last is not None and last > summary.window_start:
            # Late reading for an older window; the producer has moved on.
            return None
        if last is not None and last < summary.window_start:
            self.forget(producer.id)
        if summary.total_kwh < threshold or self.already_alerted(producer.id, summary.window_start):
            return None

        alert = PeakAlert(
            device_id=producer.device_id,
            destination=producer.alert_destination,
            window_start=summary.window_start,
            window_end=summary.window_end,
            total_kwh=summary.total_kwh,
            threshold_kwh=threshold,
        )
        self._remember(producer.id, summary.window_start)
        await self.notifier.notify(alert)
        return alert


__all__ = ["AlertTracker", "LoggingNotifier", "Notifier", "PeakAlert"]
