"""
Session bookkeeping for the telemetry hub.

A `Session` wraps one transport connection. The `SessionRegistry` is owned by
the hub and mutated only from the event loop, so its collections never need
locking. Every connection is tracked from connect to disconnect; registration
moves it into the producer or observer role.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Protocol

from meterhub.domain.models import Producer
from meterhub.infrastructure.store import ReadingStore
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


class Role(str, Enum):
    PRODUCER = "producer"
    OBSERVER = "observer"


class Liveness(str, Enum):
    ALIVE = "alive"
    SUSPECT = "suspect"


class Transport(Protocol):
    """The subset of a WebSocket connection the hub relies on."""

    @property
    def is_open(self) -> bool:
        ...

    @property
    def remote(self) -> str:
        ...

    async def send(self, data: str) -> None:
        ...

    async def ping(self) -> Awaitable[Any]:
        """Send a ping; the returned awaitable resolves when the pong arrives."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


@dataclass(eq=False)
class Session:
    transport: Transport
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    role: Optional[Role] = None
    producer: Optional[Producer] = None
    display_name: Optional[str] = None
    sequence: int = 0
    liveness: Liveness = Liveness.ALIVE
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    def mark_alive(self) -> None:
        self.liveness = Liveness.ALIVE

    def next_sequence(self) -> int:
        self.sequence += 1
        return self.sequence

    async def send_text(self, text: str) -> None:
        await self.transport.send(text)

    async def send_json(self, payload: Dict[str, Any]) -> None:
        await self.transport.send(json.dumps(payload, default=str))


class SessionRegistry:
    """
    Tracks connected sessions and their roles.

    A session is *live* when it holds a role, its liveness is `ALIVE` and its
    transport is still open.
    """

    def __init__(self, store: ReadingStore) -> None:
        self.store = store
        self._sessions: Dict[str, Session] = {}
        self._producers: Dict[str, Session] = {}
        self._observers: Dict[str, Session] = {}

    def add(self, session: Session) -> Session:
        self._sessions[session.id] = session
        return session

    def sessions(self) -> List[Session]:
        """Snapshot of every tracked session, registered or not."""
        return list(self._sessions.values())

    async def register_producer(
        self,
        session: Session,
        device_id: str,
        display_name: Optional[str] = None,
        is_synthetic: bool = True,
    ) -> Producer:
        """
        Create or touch the producer record and bind the session to it.

        An empty `display_name` leaves the stored name untouched.
        """
        producer = await self.store.upsert_producer(device_id, is_synthetic, display_name or None)
        self._observers.pop(session.id, None)
        self._sessions[session.id] = session
        self._producers[session.id] = session
        session.role = Role.PRODUCER
        session.producer = producer
        session.display_name = display_name or session.display_name or producer.display_name
        log.info(
            f"Producer registered: {session.display_name or '-'} ({device_id})",
            extra={"session": session.id, "device_id": device_id},
        )
        return producer

    def register_observer(self, session: Session) -> Optional[Role]:
        """Bind the session as an observer; returns `Role.PRODUCER` if it was one."""
        previous = Role.PRODUCER if self._producers.pop(session.id, None) is not None else None
        self._sessions[session.id] = session
        self._observers[session.id] = session
        session.role = Role.OBSERVER
        session.producer = None
        log.info("Observer registered", extra={"session": session.id})
        return previous

    def unregister(self, session: Session) -> Optional[Role]:
        """
        Forget the session entirely and return the role it held, if any.

        Calling it again for the same session returns None.
        """
        self._sessions.pop(session.id, None)
        if self._producers.pop(session.id, None) is not None:
            return Role.PRODUCER
        if self._observers.pop(session.id, None) is not None:
            return Role.OBSERVER
        return None

    def is_registered_producer(self, session: Session) -> bool:
        return session.id in self._producers

    @staticmethod
    def is_live(session: Session) -> bool:
        return session.liveness is Liveness.ALIVE and session.is_open

    def producer_sessions(self) -> List[Session]:
        """Registered producer sessions with an open transport, live or suspect."""
        return [s for s in self._producers.values() if s.is_open]

    def live_producers(self) -> List[Session]:
        return [s for s in self._producers.values() if self.is_live(s)]

    def live_observers(self) -> List[Session]:
        return [s for s in self._observers.values() if self.is_live(s)]

    def count_live_observers(self) -> int:
        return len(self.live_observers())

    def producer_listing(self) -> List[Dict[str, Any]]:
        """Wire representation of the live producers."""
        return [
            {
                "deviceId": s.producer.device_id,
                "displayName": s.display_name,
                "producerId": s.producer.id,
                "sessionId": s.id,
            }
            for s in self.live_producers()
            if s.producer is not None
        ]


__all__ = ["Role", "Liveness", "Transport", "Session", "SessionRegistry"]
