"""
WebSocket binding for the telemetry hub (websockets asyncio server).

Producers and observers share the same endpoint; the role is decided by the
first registration frame. Upgrades are accepted on `/`, `/ws`, `/socket` and
`/websocket`; any other path gets a plain 404.
"""

from __future__ import annotations

import asyncio
from http import HTTPStatus
from typing import Any, Awaitable, Optional
from urllib.parse import urlsplit

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response
from websockets.protocol import State

from meterhub.hub.server import TelemetryHub
from meterhub.utils.logging import get_logger

log = get_logger(__name__)

ALLOWED_PATHS = frozenset({"/", "/ws", "/socket", "/websocket"})


class WebSocketTransport:
    """Adapts a websockets `ServerConnection` to the hub's `Transport` protocol."""

    def __init__(self, connection: ServerConnection) -> None:
        self.connection = connection

    @property
    def is_open(self) -> bool:
        return self.connection.state is State.OPEN

    @property
    def remote(self) -> str:
        address = self.connection.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)

    async def send(self, data: str) -> None:
        await self.connection.send(data)

    async def ping(self) -> Awaitable[Any]:
        return await self.connection.ping()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.connection.close(code, reason)


def check_path(connection: ServerConnection, request: Request) -> Optional[Response]:
    """`process_request` hook: reject upgrades outside the allowed paths."""
    path = urlsplit(request.path).path or "/"
    if path not in ALLOWED_PATHS:
        log.info("Rejected upgrade on unknown path", extra={"path": path})
        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
    return None


async def handle_connection(hub: TelemetryHub, connection: ServerConnection) -> None:
    """Pump frames from one connection into the hub until it closes."""
    session = hub.connect(WebSocketTransport(connection))
    try:
        async for raw in connection:
            await hub.handle_message(session, raw)
    except ConnectionClosed as exc:
        log.debug("Connection closed with error", extra={"session": session.id, "error": str(exc)})
    finally:
        await hub.disconnect(session)


async def run_server(
    hub: TelemetryHub,
    host: str,
    port: int,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """
    Serve the hub until `stop` is set (or forever).

    Protocol-level keepalive pings are disabled; the hub's liveness monitor
    does its own probing.
    """
    await hub.start()
    try:
        async with serve(
            lambda connection: handle_connection(hub, connection),
            host,
            port,
            process_request=check_path,
            ping_interval=None,
        ) as server:
            log.info(
                f"Telemetry hub listening on ws://{host}:{port}",
                extra={"paths": sorted(ALLOWED_PATHS)},
            )
            if stop is None:
                await server.serve_forever()
            else:
                await stop.wait()
    finally:
        await hub.stop()


__all__ = ["ALLOWED_PATHS", "WebSocketTransport", "check_path", "handle_connection", "run_server"]
