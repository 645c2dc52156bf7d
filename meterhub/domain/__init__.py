"""
Domain package for meterhub.

Exports the records kept by the reading store, the wire messages exchanged
with hub sessions and the window arithmetic shared by the aggregator and hub.
"""

from meterhub.domain.messages import parse_inbound
from meterhub.domain.models import Producer, Reading, WindowInfo, WindowSummary

__all__ = [
    "Producer",
    "Reading",
    "WindowInfo",
    "WindowSummary",
    "parse_inbound",
]
