"""
Producer handshake: "is anyone listening?"

The answer is computed from the registry at call time:

- `ok`      the session is a registered producer and at least one observer is live
- `warning` the session is registered but no observer is live
- `error`   the session is not registered; the producer must register again
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

from meterhub.domain.messages import PRODUCER_HANDSHAKE_ACK
from meterhub.hub.sessions import Session, SessionRegistry
from meterhub.utils.logging import get_logger

log = get_logger(__name__)

# Seconds a single handshake send may take before the producer is skipped
SEND_TIMEOUT = 5.0


class HandshakeStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class HandshakeReason(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"
    REGISTER = "register"
    OBSERVER_JOINED = "observer-joined"
    OBSERVER_LEFT = "observer-left"
    PRODUCER_REGISTERED = "producer-registered"


def build_handshake(
    registry: SessionRegistry,
    session: Session,
    reason: HandshakeReason,
    note: Optional[str] = None,
) -> Dict[str, Any]:
    observers_online = registry.count_live_observers()
    registered = registry.is_registered_producer(session)

    if not registered:
        status = HandshakeStatus.ERROR
        message = "Producer is not registered. Register again before sending readings."
    elif observers_online > 0:
        status = HandshakeStatus.OK
        plural = "" if observers_online == 1 else "s"
        message = f"Observers ready. {observers_online} observer{plural} connected."
    else:
        status = HandshakeStatus.WARNING
        message = "No observers are connected. Readings are stored but nobody is watching."

    producer = session.producer if registered else None
    return {
        "type": PRODUCER_HANDSHAKE_ACK,
        "status": status.value,
        "observersOnline": observers_online,
        "observersReady": observers_online > 0,
        "message": note or message,
        "reason": reason.value,
        "deviceId": producer.device_id if producer else None,
        "displayName": session.display_name if producer else None,
        "timestamp": int(time.time() * 1000),
    }


async def send_handshake(
    registry: SessionRegistry,
    session: Session,
    reason: HandshakeReason,
    note: Optional[str] = None,
    timeout: float = SEND_TIMEOUT,
) -> Optional[Dict[str, Any]]:
    """
    Send a handshake to one session.

    Returns the payload, or None if the session is closed, the send failed, or
    it did not finish within `timeout` seconds.
    """
    if not session.is_open:
        return None
    payload = build_handshake(registry, session, reason, note)
    try:
        await asyncio.wait_for(session.send_json(payload), timeout=timeout)
    except Exception as exc:  # noqa: BLE001 - transport failures are the liveness monitor's job
        log.warning("Failed to send handshake", extra={"session": session.id, "error": str(exc)})
        return None
    return payload


async def broadcast_handshake(
    registry: SessionRegistry, reason: HandshakeReason, timeout: float = SEND_TIMEOUT
) -> int:
    """
    Send a fresh handshake to every producer session with an open transport.

    Returns the number of producers that received it.
    """
    targets = registry.producer_sessions()
    results = await asyncio.gather(
        *(send_handshake(registry, session, reason, timeout=timeout) for session in targets)
    )
    delivered = sum(1 for payload in results if payload is not None)
    log.debug(
        "Handshake broadcast",
        extra={"reason": reason.value, "producers": len(targets), "delivered": delivered},
    )
    return delivered


__all__ = [
    "HandshakeStatus",
    "HandshakeReason",
    "build_handshake",
    "send_handshake",
    "broadcast_handshake",
]
