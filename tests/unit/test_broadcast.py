from __future__ import annotations

import asyncio

import pytest

from meterhub.hub.broadcast import Broadcaster
from meterhub.hub.sessions import Liveness, Session, SessionRegistry


class _StalledTransport:
    """Accepts the connection but never finishes a send."""

    remote = "10.0.0.9:1234"
    is_open = True

    async def send(self, data: str) -> None:
        await asyncio.Event().wait()

    async def ping(self):  # pragma: no cover - not used by the broadcaster
        return asyncio.get_running_loop().create_future()

    async def close(self, code: int = 1000, reason: str = "") -> None:  # pragma: no cover
        return None


def _observer(registry: SessionRegistry, transport) -> Session:
    session = registry.add(Session(transport=transport))
    registry.register_observer(session)
    return session


@pytest.mark.asyncio
async def test_deliver_reaches_only_live_observers(store, transport_factory):
    registry = SessionRegistry(store)
    live = transport_factory()
    suspect = transport_factory()
    _observer(registry, live)
    _observer(registry, suspect).liveness = Liveness.SUSPECT

    delivered = await Broadcaster(registry).deliver({"type": "observer:update", "n": 1})

    assert delivered == 1
    assert live.messages() == [{"type": "observer:update", "n": 1}]
    assert suspect.sent == []


@pytest.mark.asyncio
async def test_failing_observer_does_not_block_others(store, transport_factory):
    registry = SessionRegistry(store)
    broken = transport_factory(fail_send=True)
    healthy = transport_factory()
    _observer(registry, broken)
    _observer(registry, healthy)

    delivered = await Broadcaster(registry).deliver({"type": "observer:update"})

    assert delivered == 1
    assert len(healthy.sent) == 1


@pytest.mark.asyncio
async def test_slow_observer_times_out_without_delaying_others(store, transport_factory):
    registry = SessionRegistry(store)
    healthy = transport_factory()
    _observer(registry, _StalledTransport())
    _observer(registry, healthy)

    delivered = await Broadcaster(registry, send_timeout=0.05).deliver({"type": "observer:update"})

    assert delivered == 1
    assert len(healthy.sent) == 1


@pytest.mark.asyncio
async def test_no_observers_is_a_no_op(store):
    assert await Broadcaster(SessionRegistry(store)).deliver({"type": "observer:update"}) == 0


@pytest.mark.asyncio
async def test_published_payloads_are_delivered_in_order(store, transport_factory):
    registry = SessionRegistry(store)
    transport = transport_factory()
    _observer(registry, transport)
    broadcaster = Broadcaster(registry)

    broadcaster.start()
    try:
        for n in range(3):
            broadcaster.publish({"type": "observer:update", "n": n})
        await asyncio.wait_for(broadcaster.join(), timeout=1)
    finally:
        await broadcaster.stop()

    assert [m["n"] for m in transport.messages()] == [0, 1, 2]
    assert broadcaster.pending == 0
