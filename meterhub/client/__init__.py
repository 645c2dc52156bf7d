from meterhub.client.resolver import (
    EndpointResolver,
    ReconnectingClient,
    RetryDecision,
    build_candidates,
    normalize_url,
)
from meterhub.client.simulator import MeterSimulator, SimulatorConfig
from meterhub.client.watcher import Watcher

__all__ = [
    "EndpointResolver",
    "ReconnectingClient",
    "RetryDecision",
    "build_candidates",
    "normalize_url",
    "MeterSimulator",
    "SimulatorConfig",
    "Watcher",
]
