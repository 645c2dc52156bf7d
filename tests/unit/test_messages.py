from __future__ import annotations

import json

import pytest

from meterhub.domain.messages import (
    HandshakeRequest,
    ObserverRegister,
    ProducerRegister,
    ReadingSubmission,
    parse_inbound,
)
from meterhub.domain.windows import MAX_TIMESTAMP_MS, resolve_timezone, window_start
from meterhub.errors import ValidationFailed

TIMESTAMP = 1714572000000


def _frame(**fields) -> str:
    return json.dumps(fields)


def test_parse_reading_with_optional_fields():
    message = parse_inbound(
        _frame(
            type="producer:reading",
            deviceId="EMS-1",
            powerKw=42.5,
            timestamp=TIMESTAMP,
            frequency=59.98,
            samplingInterval=30,
        )
    )
    assert isinstance(message, ReadingSubmission)
    assert message.device_id == "EMS-1"
    assert message.power_kw == 42.5
    assert message.timestamp == TIMESTAMP
    assert message.frequency == 59.98
    assert message.sampling_interval == 30


def test_integer_power_is_accepted():
    message = parse_inbound(
        _frame(type="producer:reading", deviceId="EMS-1", powerKw=50, timestamp=TIMESTAMP)
    )
    assert message.power_kw == 50.0


@pytest.mark.parametrize(
    "fields, field_name",
    [
        ({"powerKw": 10, "timestamp": TIMESTAMP}, "deviceId"),
        ({"deviceId": "", "powerKw": 10, "timestamp": TIMESTAMP}, "deviceId"),
        ({"deviceId": "EMS-1", "timestamp": TIMESTAMP}, "powerKw"),
        ({"deviceId": "EMS-1", "powerKw": "10", "timestamp": TIMESTAMP}, "powerKw"),
        ({"deviceId": "EMS-1", "powerKw": 10}, "timestamp"),
        ({"deviceId": "EMS-1", "powerKw": 10, "timestamp": "yesterday"}, "timestamp"),
        ({"deviceId": "EMS-1", "powerKw": 10, "timestamp": True}, "timestamp"),
        ({"deviceId": "EMS-1", "powerKw": 10, "timestamp": -1}, "timestamp"),
        ({"deviceId": "EMS-1", "powerKw": 10, "timestamp": 10**16}, "timestamp"),
    ],
)
def test_invalid_readings_name_the_offending_field(fields, field_name):
    with pytest.raises(ValidationFailed) as excinfo:
        parse_inbound(_frame(type="producer:reading", **fields))
    assert field_name in str(excinfo.value)


def test_latest_representable_timestamp_is_accepted():
    message = parse_inbound(
        _frame(type="producer:reading", deviceId="EMS-1", powerKw=1, timestamp=MAX_TIMESTAMP_MS)
    )
    assert window_start(message.timestamp, resolve_timezone("Pacific/Kiritimati")) is not None


def test_non_json_frame_is_rejected():
    with pytest.raises(ValidationFailed, match="not valid JSON"):
        parse_inbound("{not json")


def test_unknown_type_is_rejected():
    with pytest.raises(ValidationFailed, match="type"):
        parse_inbound(_frame(type="producer:teleport"))


def test_register_defaults_to_synthetic_without_device_id():
    message = parse_inbound(_frame(type="producer:register", displayName="Bench"))
    assert isinstance(message, ProducerRegister)
    assert message.device_id is None
    assert message.display_name == "Bench"
    assert message.is_synthetic is True


def test_register_can_declare_real_meter():
    message = parse_inbound(_frame(type="producer:register", deviceId="MTR-9", synthetic=False))
    assert message.is_synthetic is False


def test_handshake_and_observer_frames():
    assert isinstance(parse_inbound(_frame(type="producer:handshake", source="auto")), HandshakeRequest)
    assert isinstance(parse_inbound(_frame(type="observer:register")), ObserverRegister)


def test_bytes_frames_are_accepted():
    message = parse_inbound(_frame(type="observer:register").encode("utf-8"))
    assert isinstance(message, ObserverRegister)
