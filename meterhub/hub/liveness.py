"""
Periodic liveness sweep over every hub session.

Each sweep moves silent `ALIVE` sessions to `SUSPECT` and pings them; a
session still `SUSPECT` at the next sweep is closed and handed to the expiry
callback. Inbound traffic or a pong puts a session back to `ALIVE`. Pings run
as background tasks so a slow peer never delays the sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, List, Optional, Set

from meterhub.hub.sessions import Liveness, Session, SessionRegistry
from meterhub.utils.logging import get_logger

log = get_logger(__name__)

ExpiryCallback = Callable[[Session], Awaitable[None]]

# Close code for "going away"
_CLOSE_GOING_AWAY = 1001


class LivenessMonitor:
    """
    Parameters
    ----------
    registry : SessionRegistry
        Source of the sessions to sweep.
    interval : float
        Seconds between sweeps; a session is dropped after two silent sweeps.
    on_expired : callable
        Awaited with each session that was dropped; its transport is closed
        in the background.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval: float,
        on_expired: ExpiryCallback,
    ) -> None:
        self.registry = registry
        self.interval = interval
        self.on_expired = on_expired
        self._task: Optional[asyncio.Task] = None
        self._probes: Set[asyncio.Task] = set()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="liveness-monitor")

    async def stop(self) -> None:
        tasks = [t for t in (self._task, *self._probes) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        self._probes.clear()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:  # noqa: BLE001 - the timer must keep running
                log.exception("Liveness sweep failed")

    async def sweep(self) -> List[Session]:
        """Run one sweep and return the sessions that were dropped."""
        expired: List[Session] = []
        for session in self.registry.sessions():
            if not session.is_open or session.liveness is Liveness.SUSPECT:
                expired.append(session)
                continue
            session.liveness = Liveness.SUSPECT
            self._probe(session)

        for session in expired:
            await self._expire(session)
        if expired:
            log.info("Liveness sweep dropped sessions", extra={"dropped": len(expired)})
        return expired

    def _probe(self, session: Session) -> None:
        self._spawn(self._ping(session))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._probes.add(task)
        task.add_done_callback(self._probes.discard)

    async def _ping(self, session: Session) -> None:
        try:
            waiter = await session.transport.ping()
            await asyncio.wait_for(waiter, timeout=self.interval * 2)
        except Exception as exc:  # noqa: BLE001 - an unanswered ping just leaves the session SUSPECT
            log.debug("Ping failed", extra={"session": session.id, "error": str(exc)})
            return
        session.mark_alive()

    async def _expire(self, session: Session) -> None:
        log.warning(
            "Dropping unresponsive session",
            extra={"session": session.id, "role": session.role.value if session.role else None},
        )
        if session.is_open:
            self._spawn(self._close(session))
        try:
            await self.on_expired(session)
        except Exception:  # noqa: BLE001 - one session must not abort the sweep
            log.exception("Expiry callback failed", extra={"session": session.id})

    async def _close(self, session: Session) -> None:
        try:
            await session.transport.close(_CLOSE_GOING_AWAY, "liveness timeout")
        except Exception as exc:  # noqa: BLE001 - the session is already dropped
            log.debug("Close failed", extra={"session": session.id, "error": str(exc)})


__all__ = ["LivenessMonitor"]
