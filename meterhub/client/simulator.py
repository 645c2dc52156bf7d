"""
Synthetic meter: a producer client that registers and streams readings.

Power is a base load with uniform volatility (`base * (1 +/- volatility%)`),
rounded to two decimals. With `speed > 1` each tick sends several readings
stamped one sampling interval apart, so a day of data can be produced in
minutes.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from meterhub.client.resolver import EndpointResolver, ReconnectingClient
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class SimulatorConfig:
    device_id: str = "EMS-SIMULATOR-001"
    display_name: Optional[str] = None
    base_power_kw: float = 75.0
    volatility_pct: float = 10.0
    frequency_hz: float = 60.0
    interval_seconds: int = 60
    speed: int = 1
    max_readings: Optional[int] = None
    seed: Optional[int] = None
    rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.rng = random.Random(self.seed)


def synthetic_power(base_kw: float, volatility_pct: float, rng: random.Random) -> float:
    variation = (rng.random() - 0.5) * 2 * (volatility_pct / 100)
    return round(base_kw * (1 + variation), 2)


def build_reading(config: SimulatorConfig, timestamp_ms: int) -> Dict[str, Any]:
    return {
        "type": "producer:reading",
        "deviceId": config.device_id,
        "powerKw": synthetic_power(config.base_power_kw, config.volatility_pct, config.rng),
        "timestamp": timestamp_ms,
        "frequency": round(config.frequency_hz, 2),
        "samplingInterval": config.interval_seconds,
    }


class MeterSimulator:
    """Producer client driven by a `ReconnectingClient`."""

    def __init__(self, resolver: EndpointResolver, config: SimulatorConfig, **client_kwargs: Any):
        self.config = config
        self.client = ReconnectingClient(
            resolver, on_open=self._on_open, on_message=self._on_message, **client_kwargs
        )
        self.sent = 0
        self.accepted = 0
        self.last_status: Optional[str] = None
        self._done = asyncio.Event()

    async def _on_open(self, client: ReconnectingClient) -> None:
        await client.send_json(
            {
                "type": "producer:register",
                "deviceId": self.config.device_id,
                "displayName": self.config.display_name,
                "samplingInterval": self.config.interval_seconds,
                "synthetic": True,
            }
        )

    async def _on_message(self, client: ReconnectingClient, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            log.warning("Ignoring non-JSON frame from hub")
            return
        kind = message.get("type")
        if kind == "producer:handshake-ack":
            self.last_status = message.get("status")
            log.info(
                f"Handshake {message.get('status')}: {message.get('message')}",
                extra={"reason": message.get("reason")},
            )
        elif kind == "producer:acknowledged":
            if message.get("status") == "accepted":
                self.accepted += 1
            else:
                log.warning("Reading rejected", extra={"error": message.get("message")})
        elif kind == "error":
            log.warning("Hub error", extra={"error": message.get("message")})

    async def tick(self, now_ms: Optional[int] = None) -> int:
        """Send one batch of `speed` readings; returns how many went out."""
        base = now_ms if now_ms is not None else int(time.time() * 1000)
        step = self.config.interval_seconds * 1000
        sent = 0
        for i in range(max(1, self.config.speed)):
            if self.config.max_readings is not None and self.sent >= self.config.max_readings:
                self._done.set()
                break
            if not await self.client.send_json(build_reading(self.config, base + i * step)):
                break
            self.sent += 1
            sent += 1
        return sent

    async def _pump(self) -> None:
        period = self.config.interval_seconds / max(1, self.config.speed)
        while not self._done.is_set():
            if self.client.is_connected:
                await self.tick()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._done.wait(), timeout=period)

    async def run(self) -> None:
        runner = asyncio.create_task(self.client.run(), name="simulator-connection")
        try:
            await self._pump()
        finally:
            await self.client.close()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
            log.info(
                "Simulator stopped",
                extra={"sent": self.sent, "accepted": self.accepted},
            )

    def stop(self) -> None:
        self._done.set()


__all__ = ["SimulatorConfig", "MeterSimulator", "synthetic_power", "build_reading"]
