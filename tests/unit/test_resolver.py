from __future__ import annotations

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close
from websockets.protocol import State

from meterhub.client.resolver import (
    EndpointResolver,
    ReconnectingClient,
    build_candidates,
    normalize_url,
)
from meterhub.config import Settings

PRIMARY = "ws://hub.local:3000"
FALLBACKS = ["ws://backup-a:3000/ws", "wss://backup-b.example.com"]
ADVANCE = 1.0
RETRY = 3.0


def _resolver(candidates=None) -> EndpointResolver:
    return EndpointResolver(
        candidates or ["ws://p/", "ws://f1/", "ws://f2/"], advance_delay=ADVANCE, retry_delay=RETRY
    )


def test_normalize_url_canonical_forms():
    assert normalize_url("ws://Hub.Local:3000") == "ws://hub.local:3000/"
    assert normalize_url("http://hub:3000/ws/") == "ws://hub:3000/ws"
    assert normalize_url("https://hub") == "wss://hub/"
    assert normalize_url("hub:3000") == "ws://hub:3000/"


def test_normalize_url_rejects_other_schemes():
    with pytest.raises(ValueError):
        normalize_url("ftp://hub")


def test_candidates_order_primary_fallbacks_then_variants():
    candidates = build_candidates(PRIMARY, FALLBACKS)
    assert candidates == [
        "ws://hub.local:3000/",
        "ws://backup-a:3000/ws",
        "wss://backup-b.example.com/",
        "ws://hub.local:3000/ws",
        "ws://hub.local:3000/socket",
        "ws://hub.local:3000/websocket",
    ]


def test_candidates_are_deduplicated_and_skip_blanks():
    candidates = build_candidates("ws://hub:3000/ws", ["", "ws://hub:3000/ws/", "gopher://x"])
    assert candidates == [
        "ws://hub:3000/ws",
        "ws://hub:3000/",
        "ws://hub:3000/socket",
        "ws://hub:3000/websocket",
    ]


def test_resolver_from_settings():
    settings = Settings(CLIENT_PRIMARY_URL="ws://a:1", CLIENT_FALLBACK_URLS=["ws://b:2"])
    resolver = EndpointResolver.from_settings(settings)
    assert resolver.candidates[:2] == ["ws://a:1/", "ws://b:2/"]
    assert resolver.advance_delay == settings.client_advance_delay_seconds
    assert resolver.retry_delay == settings.client_retry_delay_seconds


def test_abnormal_closes_advance_through_candidates():
    resolver = _resolver()
    assert resolver.current == "ws://p/"

    first = resolver.on_close(clean=False)
    assert (first.url, first.delay, first.reset) == ("ws://f1/", ADVANCE, False)

    second = resolver.on_close(clean=False)
    assert (second.url, second.delay) == ("ws://f2/", ADVANCE)


def test_abnormal_close_on_last_candidate_wraps_with_retry_delay():
    resolver = _resolver()
    resolver.on_close(clean=False)
    resolver.on_close(clean=False)

    decision = resolver.on_close(clean=False)

    assert (decision.url, decision.index, decision.delay, decision.reset) == ("ws://p/", 0, RETRY, True)


def test_clean_close_resets_to_primary():
    resolver = _resolver()
    resolver.on_close(clean=False)

    decision = resolver.on_close(clean=True)

    assert decision.url == "ws://p/"
    assert decision.delay == RETRY


def test_intentional_close_is_not_retried_once():
    resolver = _resolver()
    resolver.mark_intentional_close()

    assert resolver.on_close(clean=False) is None
    assert resolver.current == "ws://p/"
    assert resolver.on_close(clean=False).url == "ws://f1/"


def test_replace_resets_index():
    resolver = _resolver()
    resolver.on_close(clean=False)
    resolver.replace(["ws://new/"])
    assert resolver.current == "ws://new/"
    with pytest.raises(ValueError):
        resolver.replace([])


class _FakeConnection:
    """Async-iterable connection that yields frames, then ends as configured."""

    def __init__(self, frames=(), clean: bool = True, hold: bool = False) -> None:
        self.frames = list(frames)
        self.clean = clean
        self.hold = hold
        self.sent = []
        self.state = State.OPEN
        self._closed = asyncio.Event()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.state = State.CLOSED
        self._closed.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.hold:
            await self._closed.wait()
        self.state = State.CLOSED
        if self.clean:
            raise ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)
        raise ConnectionClosedError(None, None)


class _Connector:
    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.urls = []

    async def __call__(self, url: str):
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else OSError("refused")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_client_fails_over_and_stops():
    resolver = EndpointResolver(["ws://p/", "ws://f1/"], advance_delay=0, retry_delay=0)
    working = _FakeConnection(frames=['{"type": "hello"}'], hold=True)
    connector = _Connector([OSError("refused"), working])
    received = []

    async def on_open(client: ReconnectingClient) -> None:
        await client.send_json({"type": "observer:register"})

    async def on_message(client: ReconnectingClient, raw) -> None:
        received.append(json.loads(raw))
        await client.close()

    client = ReconnectingClient(
        resolver, on_open=on_open, on_message=on_message, connector=connector, connect_timeout=1
    )
    await asyncio.wait_for(client.run(), timeout=2)

    assert connector.urls == ["ws://p/", "ws://f1/"]
    assert working.sent == [{"type": "observer:register"}]
    assert received == [{"type": "hello"}]
    assert client.connects == 1


@pytest.mark.asyncio
async def test_client_retries_from_primary_after_clean_close():
    resolver = EndpointResolver(["ws://p/", "ws://f1/"], advance_delay=0, retry_delay=0)
    final = _FakeConnection(hold=True)
    connector = _Connector([_FakeConnection(clean=False), _FakeConnection(clean=True), final])

    async def on_open(client: ReconnectingClient) -> None:
        if client.connection is final:
            await client.close()

    client = ReconnectingClient(resolver, on_open=on_open, connector=connector, connect_timeout=1)
    await asyncio.wait_for(client.run(), timeout=2)

    assert connector.urls == ["ws://p/", "ws://f1/", "ws://p/"]


@pytest.mark.asyncio
async def test_send_json_drops_when_disconnected():
    client = ReconnectingClient(_resolver(), connector=_Connector([]))
    assert await client.send_json({"type": "producer:handshake"}) is False
