"""Admission Queue: a global FIFO gate in front of the orchestrator that bounds concurrently executing jobs."""
import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Entry:
    entry_id: int
    key: str
    label: Optional[str]


class AdmissionQueue:
    """At most `capacity` tasks run at once across the whole process, whatever their key.
    Excess callers wait in FIFO order. add() returns or raises exactly what the task does: no retries, no
    waiter timeouts, no de-duplication.

    Why available: Peak memory of one ingestion (video + audio + model payloads) is what the host can
    afford, so the HTTP layer submits every job through one constructed instance kept on app.state."""

    def __init__(self, capacity: int = 1, settle_seconds: float = 0.0):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if settle_seconds < 0:
            raise ValueError("settle_seconds must be >= 0")
        self.capacity = capacity
        self.settle_seconds = settle_seconds
        self._in_flight = 0
        self._waiters: Deque["asyncio.Future[None]"] = deque()
        self._running: Dict[int, _Entry] = {}
        self._ids = itertools.count(1)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def add(self, key: str, task: Callable[[], Awaitable[T]], label: Optional[str] = None) -> T:
        """Wait for a slot, run task(), release the slot. The task factory is called only once admitted."""
        entry = _Entry(next(self._ids), key, label)
        await self._acquire(entry)
        self._running[entry.entry_id] = entry
        logger.info(
            "queue_admitted",
            extra={"entry_id": entry.entry_id, "key": key, "label": label, "in_flight": self._in_flight},
        )
        try:
            return await task()
        finally:
            self._running.pop(entry.entry_id, None)
            logger.info("queue_completed", extra={"entry_id": entry.entry_id, "key": key, "waiting": self.waiting})
            if self.settle_seconds:
                # slot stays held until the settle delay elapses
                asyncio.get_running_loop().call_later(self.settle_seconds, self._release)
            else:
                self._release()

    async def _acquire(self, entry: _Entry) -> None:
        if self._in_flight < self.capacity and not self._waiters:
            self._in_flight += 1
            return
        fut: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.info("queue_waiting", extra={"entry_id": entry.entry_id, "key": entry.key, "waiting": self.waiting})
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # slot was handed over just before cancellation; pass it on
                self._release()
            elif fut in self._waiters:
                self._waiters.remove(fut)
            raise

    def _release(self) -> None:
        # hand the slot straight to the longest waiter so nobody can overtake it
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._in_flight -= 1

    def status(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity,
            "in_flight": self._in_flight,
            "waiting": self.waiting,
            "running": [
                {"id": e.entry_id, "key": e.key, "label": e.label} for e in self._running.values()
            ],
        }
