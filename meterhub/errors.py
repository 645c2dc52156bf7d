"""
Exception hierarchy for meterhub.

Validation and registration errors are reported back to the originating
session; storage errors are reported on the ingestion path and logged on the
aggregation path.
"""

from __future__ import annotations


class MeterHubError(Exception):
    """Base class for all meterhub errors."""


class ValidationFailed(MeterHubError):
    """An inbound message was malformed or missing required fields."""


class NotRegistered(MeterHubError):
    """A producer-only message arrived from a session that never registered."""


class StorageError(MeterHubError):
    """The reading store failed to complete an operation."""


class UnknownProducer(StorageError):
    """A store operation referenced a producer id that does not exist."""


__all__ = [
    "MeterHubError",
    "ValidationFailed",
    "NotRegistered",
    "StorageError",
    "UnknownProducer",
]
