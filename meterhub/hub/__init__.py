"""Real-time hub: sessions, handshake, liveness, fan-out and the WebSocket server."""

from meterhub.hub.broadcast import Broadcaster
from meterhub.hub.handshake import HandshakeReason, HandshakeStatus, build_handshake
from meterhub.hub.liveness import LivenessMonitor
from meterhub.hub.server import TelemetryHub
from meterhub.hub.sessions import Liveness, Role, Session, SessionRegistry, Transport

__all__ = [
    "Broadcaster",
    "HandshakeReason",
    "HandshakeStatus",
    "build_handshake",
    "LivenessMonitor",
    "TelemetryHub",
    "Liveness",
    "Role",
    "Session",
    "SessionRegistry",
    "Transport",
]
