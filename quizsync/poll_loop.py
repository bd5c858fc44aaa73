"""Cancelable fixed-cadence status poller.

``PollLoop.start()`` fires a fetch immediately and then every ``interval``
seconds. Each fetch runs as its own task, so a slow response never delays
the next tick and responses may arrive out of order; every result carries
the sequence number assigned when its request was issued so the consumer can
tell stale replies apart. Fetch failures are delivered as values, never
raised out of the loop.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from .api_client import SessionApiError
from .models import SessionStatus

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    seq: int
    status: SessionStatus | None = None
    error: SessionApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status is not None


SnapshotCallback = Callable[[PollResult], Awaitable[None] | None]


def _tick_done_callback(task: asyncio.Task):
    """Log exceptions from tick tasks instead of silently swallowing."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Poll tick failed: %s", exc, exc_info=exc)


class PollLoop:
    def __init__(self, port):
        self._port = port
        self._session_id: str | None = None
        self._on_snapshot: SnapshotCallback | None = None
        self._interval: float = 0.0
        self._task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self._seq = 0
        # Bumped on every start/stop; a tick only delivers if it still matches.
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def start(self, session_id: str, on_snapshot: SnapshotCallback, interval: float):
        """Begin polling *session_id*. Restarting replaces the previous run."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.stop()
        self._session_id = session_id
        self._on_snapshot = on_snapshot
        self._interval = interval
        self._generation += 1
        self._task = asyncio.ensure_future(self._run(self._generation))
        logger.debug("Polling %s every %.1fs", session_id, interval)

    def stop(self):
        """Cancel all future ticks. Idempotent; safe from inside a callback."""
        if self._task is None:
            return
        self._generation += 1
        task, self._task = self._task, None
        if task is not asyncio.current_task():
            task.cancel()
        logger.debug("Stopped polling %s", self._session_id)

    def poll_now(self) -> asyncio.Task | None:
        """Issue one out-of-cadence tick (e.g. right after marking ready)."""
        if self._task is None:
            return None
        return self._spawn_tick(self._generation)

    async def fetch_once(self, session_id: str | None = None) -> PollResult:
        """Fetch status once, tagged with a fresh sequence number."""
        self._seq += 1
        seq = self._seq
        try:
            status = await self._port.get_session_status(session_id or self._session_id)
        except SessionApiError as exc:
            return PollResult(seq=seq, error=exc)
        return PollResult(seq=seq, status=status)

    async def wait_idle(self):
        """Wait for every in-flight tick to finish (test and shutdown helper)."""
        current = asyncio.current_task()
        pending = [t for t in self._ticks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, generation: int):
        while generation == self._generation:
            self._spawn_tick(generation)
            await asyncio.sleep(self._interval)

    def _spawn_tick(self, generation: int) -> asyncio.Task:
        task = asyncio.ensure_future(self._tick(generation))
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        task.add_done_callback(_tick_done_callback)
        return task

    async def _tick(self, generation: int):
        result = await self.fetch_once()
        if generation != self._generation:
            logger.debug("Discarding poll result #%d after stop", result.seq)
            return
        ret = self._on_snapshot(result)
        if inspect.isawaitable(ret):
            await ret
