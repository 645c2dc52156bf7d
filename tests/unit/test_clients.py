from __future__ import annotations

import io
import json
import random
from datetime import date, datetime, timezone
from decimal import Decimal
from http import HTTPStatus

import pytest
from rich.console import Console
from websockets.datastructures import Headers
from websockets.http11 import Request

from meterhub.client.resolver import EndpointResolver
from meterhub.client.simulator import MeterSimulator, SimulatorConfig, build_reading, synthetic_power
from meterhub.client.watcher import Watcher
from meterhub.domain.models import WindowSummary
from meterhub.errors import MeterHubError, ValidationFailed
from meterhub.hub.transport import check_path
from meterhub.main import configure_meter
from meterhub.reporter import print_windows
from scripts import seed_history

MINUTES_PER_DAY = 1440


class _RespondingConnection:
    def respond(self, status, text):
        return status, text


def _console() -> Console:
    return Console(file=io.StringIO(), width=120, color_system=None)


@pytest.mark.parametrize("path", ["/", "/ws", "/socket", "/websocket", "/ws?token=abc"])
def test_allowed_paths_upgrade(path):
    assert check_path(_RespondingConnection(), Request(path, Headers())) is None


def test_unknown_path_gets_404():
    status, _ = check_path(_RespondingConnection(), Request("/admin", Headers()))
    assert status == HTTPStatus.NOT_FOUND


def test_synthetic_power_stays_within_volatility():
    rng = random.Random(7)
    values = [synthetic_power(100.0, 10.0, rng) for _ in range(200)]
    assert all(90.0 <= v <= 110.0 for v in values)
    assert len(set(values)) > 1


def test_build_reading_matches_wire_format():
    config = SimulatorConfig(device_id="SIM-9", interval_seconds=30, seed=1)
    reading = build_reading(config, 1714572000000)
    assert reading["type"] == "producer:reading"
    assert reading["deviceId"] == "SIM-9"
    assert reading["timestamp"] == 1714572000000
    assert reading["samplingInterval"] == 30
    assert isinstance(reading["powerKw"], float)


@pytest.mark.asyncio
async def test_simulator_fast_forward_spaces_timestamps():
    config = SimulatorConfig(interval_seconds=60, speed=3, seed=3)
    simulator = MeterSimulator(EndpointResolver(["ws://hub/"]), config)
    sent = []

    async def capture(payload):
        sent.append(payload)
        return True

    simulator.client.send_json = capture  # type: ignore[method-assign]
    count = await simulator.tick(now_ms=0)

    assert count == 3
    assert [p["timestamp"] for p in sent] == [0, 60_000, 120_000]


@pytest.mark.asyncio
async def test_simulator_stops_after_max_readings():
    config = SimulatorConfig(speed=5, max_readings=2, seed=3)
    simulator = MeterSimulator(EndpointResolver(["ws://hub/"]), config)

    async def accept(payload):
        return True

    simulator.client.send_json = accept  # type: ignore[method-assign]
    assert await simulator.tick(now_ms=0) == 2
    assert simulator.sent == 2


def test_print_windows_renders_models_and_dumps():
    start = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
    summary = WindowSummary(
        id=1,
        producer_id=1,
        window_start=start,
        window_end=start.replace(minute=30),
        total_kwh=Decimal("25"),
        avg_power_kw=Decimal("50"),
        max_power_kw=Decimal("50"),
        min_power_kw=Decimal("50"),
        reading_count=30,
        is_peak=True,
    )
    console = _console()

    print_windows([summary, summary.model_dump(mode="json")], console=console)

    output = console.file.getvalue()
    assert "14:00-14:30" in output
    assert "25.0000" in output


def test_print_windows_handles_empty_list():
    console = _console()
    print_windows([], console=console)
    assert "No windows" in console.file.getvalue()


def test_watcher_renders_update():
    console = _console()
    watcher = Watcher(EndpointResolver(["ws://hub/"]), console=console)

    watcher.render(
        {
            "type": "observer:update",
            "producer": {"device_id": "EMS-1"},
            "reading": {"power_kw": 42.0, "timestamp": 0},
            "currentWindow": {"total_kwh": 0.7, "reading_count": 1},
            "windowInfo": {"is_peak": True},
        }
    )

    output = console.file.getvalue()
    assert "EMS-1" in output
    assert "PEAK" in output
    assert watcher.updates == 1


def test_seed_history_generates_a_reading_per_minute():
    readings = list(seed_history._generate_readings(date(2024, 5, 1), "UTC", 75.0, 10.0, seed=42))
    assert len(readings) == MINUTES_PER_DAY
    assert readings[1][0] - readings[0][0] == 60_000
    assert all(isinstance(power, Decimal) for _, power in readings)
    again = list(seed_history._generate_readings(date(2024, 5, 1), "UTC", 75.0, 10.0, seed=42))
    assert json.dumps([str(p) for _, p in readings]) == json.dumps([str(p) for _, p in again])


@pytest.mark.asyncio
async def test_configure_meter_sets_alert_and_timezone(store):
    await store.upsert_producer("EMS-1", False, "Bench")

    producer = await configure_meter(
        store,
        "EMS-1",
        display_name=None,
        alert_threshold_kwh=12.5,
        alert_destination="ops@example.com",
        timezone="Asia/Kuala_Lumpur",
    )

    assert producer.display_name == "Bench"
    assert producer.alert_threshold_kwh == Decimal("12.5")
    assert producer.alert_destination == "ops@example.com"
    assert (await store.get_producer("EMS-1")).timezone == "Asia/Kuala_Lumpur"


@pytest.mark.asyncio
async def test_configure_meter_rejects_unknown_device_and_zone(store):
    with pytest.raises(MeterHubError, match="Unknown device"):
        await configure_meter(store, "EMS-404", timezone="UTC")

    await store.upsert_producer("EMS-1", False)
    with pytest.raises(ValidationFailed, match="Unknown timezone"):
        await configure_meter(store, "EMS-1", timezone="Mars/Olympus_Mons")
