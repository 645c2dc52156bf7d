"""
Wire messages exchanged with hub sessions.

Every frame is a JSON object with a `type` field. Inbound frames are parsed
into the pydantic models below through a discriminated union; outbound frame
types are listed as constants and built by the hub modules.
"""
from __future__ import annotations

import math
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from meterhub.domain.windows import MAX_TIMESTAMP_MS
from meterhub.errors import ValidationFailed

# Outbound frame types
PRODUCER_REGISTERED = "producer:registered"
PRODUCER_HANDSHAKE_ACK = "producer:handshake-ack"
PRODUCER_ACKNOWLEDGED = "producer:acknowledged"
OBSERVER_INITIAL = "observer:initial"
OBSERVER_UPDATE = "observer:update"
OBSERVER_PRODUCERS_UPDATED = "observer:producers-updated"
ERROR = "error"

_WIRE_CONFIG = {"populate_by_name": True, "extra": "ignore"}


class ProducerRegister(BaseModel):
    type: Literal["producer:register"]
    device_id: Optional[str] = Field(None, alias="deviceId", min_length=1)
    display_name: Optional[str] = Field(None, alias="displayName")
    sampling_interval: Optional[int] = Field(None, alias="samplingInterval", ge=1, le=120)
    is_synthetic: bool = Field(True, alias="synthetic")

    model_config = _WIRE_CONFIG


class HandshakeRequest(BaseModel):
    type: Literal["producer:handshake"]
    source: Optional[str] = None

    model_config = _WIRE_CONFIG


class ObserverRegister(BaseModel):
    type: Literal["observer:register"]

    model_config = _WIRE_CONFIG


class ReadingSubmission(BaseModel):
    """
    A power sample sent by a producer. Numeric fields must arrive as JSON
    numbers; strings such as "42" are rejected.
    """

    type: Literal["producer:reading"]
    device_id: str = Field(..., alias="deviceId", min_length=1, strict=True)
    power_kw: float = Field(..., alias="powerKw", strict=True, allow_inf_nan=False)
    timestamp: int = Field(
        ..., ge=0, le=MAX_TIMESTAMP_MS, description="Producer-supplied epoch milliseconds."
    )
    frequency: Optional[float] = Field(None, strict=True, allow_inf_nan=False)
    sampling_interval: Optional[int] = Field(None, alias="samplingInterval", ge=1, le=120)

    model_config = _WIRE_CONFIG

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_is_number(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number of epoch milliseconds")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("must be finite")
        return int(value)


InboundMessage = Annotated[
    Union[ProducerRegister, HandshakeRequest, ObserverRegister, ReadingSubmission],
    Field(discriminator="type"),
]

_INBOUND: TypeAdapter[Any] = TypeAdapter(InboundMessage)


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = [str(part) for part in first.get("loc", ())]
    if first.get("type") == "json_invalid":
        return "Invalid message: body is not valid JSON"
    if first.get("type") in ("union_tag_invalid", "union_tag_not_found"):
        return "Invalid message: unknown or missing \"type\""
    kind = loc[0] if loc else "message"
    field = ".".join(loc[1:]) or "body"
    return f'Invalid {kind} payload: "{field}" {first.get("msg", "is invalid")}'


def parse_inbound(raw: Union[str, bytes]) -> Any:
    """
    Parse a raw frame into one of the inbound message models.

    Raises
    ------
    ValidationFailed
        If the frame is not JSON, has an unknown type, or fails field validation.
    """
    try:
        return _INBOUND.validate_json(raw)
    except ValidationError as exc:
        raise ValidationFailed(_describe(exc)) from exc


__all__ = [
    "ProducerRegister",
    "HandshakeRequest",
    "ObserverRegister",
    "ReadingSubmission",
    "InboundMessage",
    "parse_inbound",
    "PRODUCER_REGISTERED",
    "PRODUCER_HANDSHAKE_ACK",
    "PRODUCER_ACKNOWLEDGED",
    "OBSERVER_INITIAL",
    "OBSERVER_UPDATE",
    "OBSERVER_PRODUCERS_UPDATED",
    "ERROR",
]
