"""
Client-side endpoint resolution and reconnection.

`EndpointResolver` is a pure state machine over an ordered candidate list:

- abnormal close with candidates left   -> next candidate after the advance delay
- abnormal close on the last candidate  -> back to the first after the retry delay
- clean close                           -> back to the first after the retry delay
- intentional close                     -> no decision; the caller reconnects itself

`ReconnectingClient` drives a websockets connection through the resolver.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException
from websockets.protocol import State

from meterhub.utils.logging import get_logger

log = get_logger(__name__)

PATH_VARIANTS = ("/", "/ws", "/socket", "/websocket")

_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def normalize_url(url: str) -> str:
    """
    Canonical form used for de-duplication: ws/wss scheme, lowercase host, a
    root path of "/" and no trailing slash on other paths.
    """
    raw = url.strip()
    if "://" not in raw:
        raw = f"ws://{raw}"
    parts = urlsplit(raw)
    scheme = _SCHEMES.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise ValueError(f"Not a WebSocket address: {url!r}")
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((scheme, parts.netloc.lower(), path, parts.query, ""))


def origin_of(url: str) -> str:
    parts = urlsplit(normalize_url(url))
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def build_candidates(primary: str, fallbacks: Iterable[str] = ()) -> List[str]:
    """
    Primary, then fallbacks, then the primary's origin with each path variant;
    de-duplicated in order. Blank or malformed entries are skipped.
    """
    ordered: List[str] = []
    seen = set()

    def add(url: str) -> None:
        try:
            normalized = normalize_url(url)
        except ValueError:
            log.warning("Ignoring invalid endpoint", extra={"url": url})
            return
        if normalized not in seen:
            seen.add(normalized)
            ordered.append(normalized)

    for url in (primary, *fallbacks):
        if url and url.strip():
            add(url)
    if primary and primary.strip():
        with contextlib.suppress(ValueError):
            origin = origin_of(primary)
            for suffix in PATH_VARIANTS:
                add(origin + suffix)
    return ordered


@dataclass(frozen=True)
class RetryDecision:
    url: str
    index: int
    delay: float
    reset: bool


class EndpointResolver:
    """
    Parameters
    ----------
    candidates : Sequence[str]
        Endpoints in preference order; see `build_candidates`.
    advance_delay : float
        Seconds before trying the next candidate after an abnormal close.
    retry_delay : float
        Seconds before restarting from the first candidate.
    """

    def __init__(
        self,
        candidates: Sequence[str],
        advance_delay: float = 1.0,
        retry_delay: float = 3.0,
    ) -> None:
        if not candidates:
            raise ValueError("At least one endpoint candidate is required")
        self.candidates: List[str] = list(candidates)
        self.advance_delay = advance_delay
        self.retry_delay = retry_delay
        self.index = 0
        self._intentional = False

    @classmethod
    def from_settings(cls, settings: Any) -> "EndpointResolver":
        return cls(
            build_candidates(settings.client_primary_url, settings.client_fallback_urls),
            advance_delay=settings.client_advance_delay_seconds,
            retry_delay=settings.client_retry_delay_seconds,
        )

    @property
    def current(self) -> str:
        return self.candidates[self.index]

    def mark_intentional_close(self) -> None:
        """Call right before closing on purpose so the close is not retried."""
        self._intentional = True

    def on_close(self, clean: bool) -> Optional[RetryDecision]:
        if self._intentional:
            self._intentional = False
            return None
        if not clean and self.index + 1 < len(self.candidates):
            self.index += 1
            return RetryDecision(self.current, self.index, self.advance_delay, reset=False)
        self.index = 0
        return RetryDecision(self.current, self.index, self.retry_delay, reset=True)

    def replace(self, candidates: Sequence[str]) -> None:
        if not candidates:
            raise ValueError("At least one endpoint candidate is required")
        self.candidates = list(candidates)
        self.index = 0


Connector = Callable[[str], Awaitable[Any]]
OpenHandler = Callable[["ReconnectingClient"], Awaitable[None]]
MessageHandler = Callable[["ReconnectingClient", Any], Awaitable[None]]


def default_connector(url: str) -> Awaitable[Any]:
    return connect(url, open_timeout=None)


class ReconnectingClient:
    """
    Keeps one connection open to the best reachable endpoint.

    `on_open` runs after every successful connect (register there); `on_message`
    receives each inbound frame. Connect failures count as abnormal closes.
    """

    def __init__(
        self,
        resolver: EndpointResolver,
        on_open: Optional[OpenHandler] = None,
        on_message: Optional[MessageHandler] = None,
        connect_timeout: float = 10.0,
        connector: Connector = default_connector,
    ) -> None:
        self.resolver = resolver
        self.on_open = on_open
        self.on_message = on_message
        self.connect_timeout = connect_timeout
        self.connector = connector
        self.connection: Any = None
        self.connects = 0
        self._stopped = asyncio.Event()
        self._wake = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.state is State.OPEN

    async def run(self) -> None:
        while not self._stopped.is_set():
            clean = await self._session(self.resolver.current)
            decision = self.resolver.on_close(clean)
            if self._stopped.is_set():
                break
            if decision is None:
                continue
            log.info(
                f"Reconnecting to {decision.url} in {decision.delay:g}s",
                extra={"index": decision.index, "reset": decision.reset},
            )
            await self._pause(decision.delay)

    async def _session(self, url: str) -> bool:
        """Connect and pump messages; returns whether the connection ended cleanly."""
        try:
            connection = await asyncio.wait_for(self.connector(url), self.connect_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            log.warning(f"Connect to {url} failed", extra={"error": repr(exc)})
            return False

        self.connection = connection
        self.connects += 1
        log.info(f"Connected to {url}")
        try:
            if self.on_open is not None:
                await self.on_open(self)
            async for raw in connection:
                if self.on_message is not None:
                    await self.on_message(self, raw)
        except ConnectionClosedOK:
            return True
        except ConnectionClosed as exc:
            log.warning(f"Connection to {url} lost", extra={"error": repr(exc)})
            return False
        finally:
            self.connection = None
        return True

    async def _pause(self, delay: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        self._wake.clear()

    async def send_json(self, payload: Any) -> bool:
        """Send a frame if connected; returns False (and logs) when it was dropped."""
        if not self.is_connected:
            log.warning(
                "Not connected, dropped message",
                extra={"kind": payload.get("type") if isinstance(payload, dict) else None},
            )
            return False
        try:
            await self.connection.send(json.dumps(payload))
        except ConnectionClosed:
            return False
        return True

    async def reconnect(self, candidates: Optional[Sequence[str]] = None) -> None:
        """Switch to a new candidate list and connect to its first entry right away."""
        if candidates is not None:
            self.resolver.replace(candidates)
        else:
            self.resolver.index = 0
        connection = self.connection
        if connection is not None:
            self.resolver.mark_intentional_close()
            await connection.close()
        else:
            self._wake.set()

    async def close(self) -> None:
        self._stopped.set()
        self._wake.set()
        connection = self.connection
        if connection is not None:
            self.resolver.mark_intentional_close()
            await connection.close()


__all__ = [
    "PATH_VARIANTS",
    "normalize_url",
    "origin_of",
    "build_candidates",
    "RetryDecision",
    "EndpointResolver",
    "ReconnectingClient",
    "default_connector",
]
