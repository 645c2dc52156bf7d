"""
Domain models for meterhub.

Defines the records held by the reading store: producers (meters), raw
readings and 30-minute window summaries. The same models are serialized into
the payloads broadcast to observers.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_serializer


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class Producer(BaseModel):
    """
    A registered meter or simulator. `device_id` is globally unique.
    """

    id: int = Field(..., description="Primary key.")
    device_id: str = Field(..., description="Unique external name of the meter.")
    display_name: Optional[str] = Field(None, description="Human-friendly label.")
    is_synthetic: bool = Field(False, description="Whether the producer is a simulator.")
    sampling_interval: int = Field(60, description="Current sampling interval in seconds.")
    alert_threshold_kwh: Optional[Decimal] = Field(
        None, description="Peak-window energy above which an alert is raised."
    )
    alert_destination: Optional[str] = Field(None, description="Where alerts are delivered.")
    timezone: Optional[str] = Field(None, description="IANA zone used for window alignment.")
    created_at: datetime
    updated_at: datetime

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @field_serializer("alert_threshold_kwh", when_used="json")
    def _threshold_to_float(self, value: Optional[Decimal]) -> Optional[float]:
        return _as_float(value)


class Reading(BaseModel):
    """
    A single immutable power sample. `timestamp` is producer-supplied epoch ms.
    """

    id: int
    producer_id: int
    timestamp: int = Field(..., description="Producer-supplied epoch milliseconds.")
    power_kw: Decimal
    frequency: Optional[Decimal] = None
    sampling_interval: int = 60
    created_at: Optional[datetime] = None

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @field_serializer("power_kw", "frequency", when_used="json")
    def _decimal_to_float(self, value: Optional[Decimal]) -> Optional[float]:
        return _as_float(value)


class WindowSummary(BaseModel):
    """
    Aggregated energy for one producer over one 30-minute window.
    """

    id: int
    producer_id: int
    window_start: datetime
    window_end: datetime
    total_kwh: Decimal
    avg_power_kw: Decimal
    max_power_kw: Decimal
    min_power_kw: Decimal
    reading_count: int
    is_peak: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @field_serializer(
        "total_kwh", "avg_power_kw", "max_power_kw", "min_power_kw", when_used="json"
    )
    def _decimal_to_float(self, value: Decimal) -> float:
        return float(value)


class WindowInfo(BaseModel):
    """Boundaries and tariff class of a window, independent of stored data."""

    start: datetime
    end: datetime
    is_peak: bool

    model_config = {"frozen": True}


__all__ = ["Producer", "Reading", "WindowSummary", "WindowInfo"]
