"""
Telemetry hub: message dispatch for producer and observer sessions.

The hub owns the session registry, the window aggregator, the broadcaster and
the liveness monitor. It is transport-agnostic; `meterhub.hub.transport`
binds it to a WebSocket server.

Ingestion path for one reading:

    validate -> store reading -> aggregate window -> check alerts
             -> publish observer update -> acknowledge to the producer

Once the reading is stored, failures further down are logged and never
undo it.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from meterhub.aggregator import WindowAggregator, WindowResult
from meterhub.alerts import AlertTracker, LoggingNotifier, Notifier
from meterhub.config import Settings
from meterhub.domain import messages
from meterhub.domain.messages import (
    HandshakeRequest,
    ObserverRegister,
    ProducerRegister,
    ReadingSubmission,
    parse_inbound,
)
from meterhub.domain.models import Producer, Reading, WindowInfo
from meterhub.errors import NotRegistered, StorageError, ValidationFailed
from meterhub.hub.broadcast import Broadcaster
from meterhub.hub.handshake import HandshakeReason, broadcast_handshake, send_handshake
from meterhub.hub.liveness import LivenessMonitor
from meterhub.hub.sessions import Role, Session, SessionRegistry, Transport
from meterhub.infrastructure.store import ReadingStore
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json") if model is not None else None


class TelemetryHub:
    """
    Parameters
    ----------
    store : ReadingStore
        Persistence for producers, readings and window summaries.
    default_timezone : str
        Zone for window alignment of producers without their own.
    end_inclusive : bool
        Window fetch includes readings stamped exactly on the window end.
    liveness_interval : float
        Seconds between liveness sweeps.
    recent_windows : int
        Completed windows included in an observer's initial state.
    default_device_id : str
        Device id used when a producer registers without one.
    notifier : Notifier | None
        Receives peak alerts; defaults to logging them.
    alert_cache_size : int
        Producers remembered by the alert de-duplication map.
    send_timeout : float
        Seconds one fan-out or handshake send may take before it is abandoned.
    """

    def __init__(
        self,
        store: ReadingStore,
        default_timezone: str = "UTC",
        end_inclusive: bool = True,
        liveness_interval: float = 25.0,
        recent_windows: int = 10,
        default_device_id: str = "EMS-SIMULATOR-001",
        notifier: Optional[Notifier] = None,
        alert_cache_size: int = 1024,
        send_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.registry = SessionRegistry(store)
        self.aggregator = WindowAggregator(store, default_timezone, end_inclusive)
        self.broadcaster = Broadcaster(self.registry, send_timeout)
        self.monitor = LivenessMonitor(self.registry, liveness_interval, self.disconnect)
        self.alerts = AlertTracker(notifier or LoggingNotifier(), alert_cache_size)
        self.recent_windows = recent_windows
        self.default_device_id = default_device_id
        self.send_timeout = send_timeout

    @classmethod
    def from_settings(
        cls, store: ReadingStore, settings: Settings, notifier: Optional[Notifier] = None
    ) -> "TelemetryHub":
        return cls(
            store,
            default_timezone=settings.local_timezone,
            end_inclusive=settings.window_end_inclusive,
            liveness_interval=settings.liveness_interval_seconds,
            recent_windows=settings.initial_recent_windows,
            default_device_id=settings.default_device_id,
            notifier=notifier,
            alert_cache_size=settings.alert_cache_size,
        )

    async def start(self) -> None:
        self.broadcaster.start()
        self.monitor.start()
        log.info("Telemetry hub started")

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.broadcaster.stop()
        log.info("Telemetry hub stopped")

    def stats(self) -> Dict[str, int]:
        return {
            "sessions": len(self.registry.sessions()),
            "producersOnline": len(self.registry.live_producers()),
            "observersOnline": self.registry.count_live_observers(),
        }

    # Connection lifecycle -------------------------------------------------

    def connect(self, transport: Transport) -> Session:
        session = self.registry.add(Session(transport=transport))
        log.info("Session connected", extra={"session": session.id, "remote": transport.remote})
        return session

    async def disconnect(self, session: Session) -> Optional[Role]:
        """
        Remove a session and notify the other role. Safe to call twice.
        """
        role = self.registry.unregister(session)
        if role is None:
            return None
        log.info(
            f"Session disconnected ({role.value})",
            extra={"session": session.id, "role": role.value},
        )
        if role is Role.PRODUCER:
            self.publish_producer_listing()
        else:
            await broadcast_handshake(
                self.registry, HandshakeReason.OBSERVER_LEFT, timeout=self.send_timeout
            )
        return role

    # Dispatch -------------------------------------------------------------

    async def handle_message(self, session: Session, raw: Union[str, bytes]) -> None:
        """Process one inbound frame; errors are reported to the sender."""
        session.mark_alive()
        try:
            message = parse_inbound(raw)
        except ValidationFailed as exc:
            log.warning("Rejected message", extra={"session": session.id, "error": str(exc)})
            await self._send_error(session, str(exc))
            return

        try:
            if isinstance(message, ReadingSubmission):
                await self.on_reading(session, message)
            elif isinstance(message, HandshakeRequest):
                await self.on_handshake(session, message)
            elif isinstance(message, ProducerRegister):
                await self.on_producer_register(session, message)
            elif isinstance(message, ObserverRegister):
                await self.on_observer_register(session)
        except NotRegistered as exc:
            log.warning("Producer message before registration", extra={"session": session.id})
            await send_handshake(
                self.registry,
                session,
                HandshakeReason.AUTO,
                note=str(exc),
                timeout=self.send_timeout,
            )
        except Exception as exc:  # noqa: BLE001 - one bad message must not end the session
            log.exception("Message handling failed", extra={"session": session.id})
            await self._send_error(session, str(exc))

    async def _send_error(self, session: Session, message: str) -> None:
        if not session.is_open:
            return
        try:
            await session.send_json(
                {"type": messages.ERROR, "message": message, "timestamp": _now_ms()}
            )
        except Exception as exc:  # noqa: BLE001 - transport failures are the liveness monitor's job
            log.debug("Failed to report error", extra={"session": session.id, "error": str(exc)})

    # Producers ------------------------------------------------------------

    async def on_producer_register(self, session: Session, message: ProducerRegister) -> Producer:
        device_id = message.device_id or self.default_device_id
        producer = await self.registry.register_producer(
            session, device_id, message.display_name, message.is_synthetic
        )
        if message.sampling_interval and message.sampling_interval != producer.sampling_interval:
            producer = await self.store.update_producer(
                producer.id, sampling_interval=message.sampling_interval
            )
            session.producer = producer

        await session.send_json(
            {
                "type": messages.PRODUCER_REGISTERED,
                "deviceId": producer.device_id,
                "displayName": session.display_name,
                "producer": _dump(producer),
                "timestamp": _now_ms(),
            }
        )
        await send_handshake(
            self.registry, session, HandshakeReason.REGISTER, timeout=self.send_timeout
        )

        self.publish_producer_listing()
        if self.registry.count_live_observers() > 0:
            await broadcast_handshake(
                self.registry, HandshakeReason.PRODUCER_REGISTERED, timeout=self.send_timeout
            )
        return producer

    async def on_handshake(self, session: Session, message: HandshakeRequest) -> None:
        reason = HandshakeReason.AUTO if message.source == "auto" else HandshakeReason.MANUAL
        payload = await send_handshake(self.registry, session, reason, timeout=self.send_timeout)
        log.info(
            f"Handshake from {session.display_name or 'unknown producer'}",
            extra={
                "session": session.id,
                "status": payload["status"] if payload else None,
                "observers": payload["observersOnline"] if payload else 0,
            },
        )

    async def on_reading(self, session: Session, message: ReadingSubmission) -> Optional[Reading]:
        if not self.registry.is_registered_producer(session):
            raise NotRegistered("Reading rejected: producer is not registered. Register again.")

        ack_base = {
            "type": messages.PRODUCER_ACKNOWLEDGED,
            "deviceId": message.device_id,
            "reading": {"powerKw": message.power_kw, "timestamp": message.timestamp},
        }
        try:
            producer, reading = await self._store_reading(session, message)
        except StorageError as exc:
            log.error(
                "Failed to store reading",
                extra={"device_id": message.device_id, "error": str(exc)},
            )
            await session.send_json(
                {**ack_base, "status": "error", "message": str(exc), "timestamp": _now_ms()}
            )
            return None

        log.info(
            f"Reading received: {producer.device_id} - {reading.power_kw} kW",
            extra={"device_id": producer.device_id, "reading_ts": reading.timestamp},
        )
        result = await self._aggregate(producer, reading)
        await self._check_alerts(producer, result)
        self.broadcaster.publish(self._update_payload(producer, reading, result))

        sequence = session.next_sequence()
        await session.send_json(
            {
                **ack_base,
                "status": "accepted",
                "observersOnline": self.registry.count_live_observers(),
                "sequence": sequence,
                "timestamp": _now_ms(),
            }
        )
        return reading

    async def _store_reading(
        self, session: Session, message: ReadingSubmission
    ) -> "tuple[Producer, Reading]":
        bound = session.producer
        is_synthetic = bound.is_synthetic if bound is not None else True
        producer = await self.store.upsert_producer(message.device_id, is_synthetic)
        interval = message.sampling_interval
        if interval and interval != producer.sampling_interval:
            producer = await self.store.update_producer(producer.id, sampling_interval=interval)
            log.info(
                f"Updated {producer.device_id} sampling interval to {interval}s",
                extra={"device_id": producer.device_id},
            )
        reading = await self.store.append_reading(
            producer.id,
            message.timestamp,
            Decimal(str(message.power_kw)),
            Decimal(str(message.frequency)) if message.frequency is not None else None,
            interval or producer.sampling_interval,
        )
        return producer, reading

    async def _aggregate(self, producer: Producer, reading: Reading) -> WindowResult:
        window: Optional[WindowInfo] = None
        try:
            window = self.aggregator.window_for(producer, reading.timestamp)
            summary = await self.aggregator.compute_block(producer, window.start)
        except Exception:  # noqa: BLE001 - the reading is stored; the summary is just stale
            log.exception(
                "Window aggregation failed",
                extra={"device_id": producer.device_id, "reading_ts": reading.timestamp},
            )
            summary = None
        return WindowResult(summary=summary, window=window)

    async def _check_alerts(self, producer: Producer, result: WindowResult) -> None:
        try:
            await self.alerts.check(producer, result.summary)
        except Exception:  # noqa: BLE001 - alert delivery is best effort
            log.exception("Peak alert failed", extra={"device_id": producer.device_id})

    @staticmethod
    def _update_payload(
        producer: Producer, reading: Reading, result: WindowResult
    ) -> Dict[str, Any]:
        return {
            "type": messages.OBSERVER_UPDATE,
            "producer": _dump(producer),
            "reading": _dump(reading),
            "currentWindow": _dump(result.summary),
            "windowInfo": _dump(result.window),
            "timestamp": _now_ms(),
        }

    def publish_producer_listing(self) -> None:
        self.broadcaster.publish(
            {
                "type": messages.OBSERVER_PRODUCERS_UPDATED,
                "producers": self.registry.producer_listing(),
                "timestamp": _now_ms(),
            }
        )

    # Observers ------------------------------------------------------------

    async def on_observer_register(self, session: Session) -> Optional[Dict[str, Any]]:
        if self.registry.register_observer(session) is Role.PRODUCER:
            self.publish_producer_listing()
        payload: Optional[Dict[str, Any]] = None
        try:
            payload = await self.initial_state()
        except StorageError:
            log.exception("Failed to build initial observer state", extra={"session": session.id})
        if payload is not None:
            await session.send_json(payload)
        await broadcast_handshake(
            self.registry, HandshakeReason.OBSERVER_JOINED, timeout=self.send_timeout
        )
        return payload

    async def default_producer(self) -> Optional[Producer]:
        """
        The producer an observer sees first: the most recently registered live
        synthetic producer, else the most recently created producer.
        """
        producers = await self.store.list_producers()
        by_id = {p.id: p for p in producers}
        for session in reversed(self.registry.live_producers()):
            bound = session.producer
            if bound is not None and bound.is_synthetic and bound.id in by_id:
                return by_id[bound.id]
        return producers[0] if producers else None

    async def initial_state(self, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Snapshot sent once to a newly registered observer; None without producers."""
        moment = now or datetime.now(timezone.utc)
        producer = await self.default_producer()
        if producer is None:
            return None

        current = await self.aggregator.compute_current(producer, moment)
        today = await self.aggregator.summaries_for_day(
            producer, self.aggregator.local_today(producer, moment)
        )
        recent = await self.aggregator.recent_completed(producer, self.recent_windows, moment)
        all_producers = await self.store.list_producers()
        return {
            "type": messages.OBSERVER_INITIAL,
            "producer": _dump(producer),
            "currentWindow": _dump(current.summary),
            "windowInfo": _dump(current.window),
            "windowsToday": [_dump(s) for s in today],
            "recentWindows": [_dump(s) for s in recent],
            "producers": self.registry.producer_listing(),
            "allProducers": [_dump(p) for p in all_producers],
            "timestamp": _now_ms(),
        }


__all__ = ["TelemetryHub"]
