"""
Terminal observer: registers with the hub and prints what it broadcasts.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console

from meterhub.client.resolver import EndpointResolver, ReconnectingClient
from meterhub.reporter import print_windows
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


def _clock(ms: Optional[int]) -> str:
    if ms is None:
        return "--:--:--"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%H:%M:%S")


class Watcher:
    def __init__(
        self,
        resolver: EndpointResolver,
        console: Optional[Console] = None,
        **client_kwargs: Any,
    ) -> None:
        self.console = console or Console()
        self.client = ReconnectingClient(
            resolver, on_open=self._on_open, on_message=self._on_message, **client_kwargs
        )
        self.updates = 0

    async def _on_open(self, client: ReconnectingClient) -> None:
        await client.send_json({"type": "observer:register"})
        self.console.print(f"[green]Watching[/green] {client.resolver.current}")

    async def _on_message(self, client: ReconnectingClient, raw: Any) -> None:
        try:
            message: Dict[str, Any] = json.loads(raw)
        except ValueError:
            return
        self.render(message)

    def render(self, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "observer:initial":
            producer = message.get("producer") or {}
            self.console.rule(f"{producer.get('device_id', '?')} - today")
            print_windows(message.get("windowsToday") or [], console=self.console)
        elif kind == "observer:update":
            self.updates += 1
            producer = message.get("producer") or {}
            reading = message.get("reading") or {}
            window = message.get("currentWindow") or {}
            info = message.get("windowInfo") or {}
            peak = "[red]PEAK[/red]" if info.get("is_peak") else "[dim]off-peak[/dim]"
            self.console.print(
                f"{_clock(reading.get('timestamp'))} [cyan]{producer.get('device_id')}[/cyan] "
                f"{reading.get('power_kw')} kW | window {window.get('total_kwh', 0)} kWh "
                f"({window.get('reading_count', 0)} readings) {peak}"
            )
        elif kind == "observer:producers-updated":
            names = [p.get("displayName") or p.get("deviceId") for p in message.get("producers", [])]
            self.console.print(f"[yellow]Producers online:[/yellow] {', '.join(names) or 'none'}")
        elif kind == "error":
            self.console.print(f"[red]Hub error:[/red] {message.get('message')}")

    async def run(self) -> None:
        await self.client.run()

    async def close(self) -> None:
        await self.client.close()


__all__ = ["Watcher"]
