"""
Fan-out of hub updates to observer sessions.

Producers of updates call `publish`, which only enqueues. A single delivery
task drains the queue and sends each payload to a snapshot of the live
observers concurrently; a failing or slow observer is logged and skipped
without holding up the others.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Dict, Optional

from meterhub.hub.sessions import Session, SessionRegistry
from meterhub.utils.logging import get_logger

log = get_logger(__name__)


class Broadcaster:
    """
    Parameters
    ----------
    registry : SessionRegistry
        Source of live observer sessions.
    send_timeout : float
        Seconds allowed for one observer to accept a frame.
    """

    def __init__(self, registry: SessionRegistry, send_timeout: float = 5.0) -> None:
        self.registry = registry
        self.send_timeout = send_timeout
        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, payload: Dict[str, Any]) -> None:
        """Hand a payload to the delivery task without waiting for delivery."""
        self._queue.put_nowait(payload)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="observer-broadcast")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def join(self) -> None:
        """Wait until every published payload has been delivered."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self.deliver(payload)
            except Exception:  # noqa: BLE001 - delivery loop must survive bad payloads
                log.exception("Broadcast delivery failed", extra={"kind": payload.get("type")})
            finally:
                self._queue.task_done()

    async def deliver(self, payload: Dict[str, Any]) -> int:
        """
        Send one payload to every live observer.

        Returns the number of observers that accepted it.
        """
        observers = self.registry.live_observers()
        if not observers:
            return 0
        text = json.dumps(payload, default=str)
        results = await asyncio.gather(
            *(self._send(session, text) for session in observers), return_exceptions=True
        )
        delivered = 0
        for session, result in zip(observers, results):
            if isinstance(result, BaseException):
                log.warning(
                    "Observer send failed",
                    extra={"session": session.id, "error": repr(result)},
                )
            else:
                delivered += 1
        return delivered

    async def _send(self, session: Session, text: str) -> None:
        await asyncio.wait_for(session.send_text(text), timeout=self.send_timeout)


__all__ = ["Broadcaster"]
