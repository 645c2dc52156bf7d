"""
meterhub - real-time telemetry hub for energy meters.

Producers (meters or simulators) stream power readings over WebSocket;
observers receive live updates. Every reading is folded into a 30-minute
window summary with peak/off-peak classification:

- Session registry with heartbeat liveness
- Producer handshake reporting whether anyone is watching
- Window aggregation with idempotent upserts
- Observer fan-out isolated per session
- Client endpoint resolver with ordered failover
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from meterhub.aggregator import WindowAggregator, WindowResult, summarize
from meterhub.config import Settings, get_settings
from meterhub.domain.models import Producer, Reading, WindowInfo, WindowSummary
from meterhub.errors import MeterHubError, NotRegistered, StorageError, ValidationFailed
from meterhub.hub.server import TelemetryHub
from meterhub.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "Producer",
    "Reading",
    "WindowInfo",
    "WindowSummary",
    # Aggregation
    "WindowAggregator",
    "WindowResult",
    "summarize",
    # Hub
    "TelemetryHub",
    # Errors
    "MeterHubError",
    "NotRegistered",
    "StorageError",
    "ValidationFailed",
    # Logging
    "configure_logging",
    "get_logger",
]
