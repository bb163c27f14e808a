"""
GCProbe: Clock and Deadlines

``Clock.now()`` is a monotonic timestamp in seconds. ``Clock.after()`` arms
a one-shot timer measured from the moment of arming. Two implementations:

- LoopClock: the running asyncio loop (``loop.time`` / ``loop.call_later``).
- ManualClock: virtual time advanced explicitly, for deterministic tests
  and for simulated runs.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from collections.abc import Callable

import structlog

logger = structlog.get_logger()


class Deadline:
    """
    A cancellable one-shot timer.

    The callback runs at most once. ``cancel()`` after the timer fired, or
    a second ``cancel()``, does nothing.
    """

    def __init__(self, duration_s: float, armed_at: float, callback: Callable[[], None]) -> None:
        self.duration_s = duration_s
        self.armed_at = armed_at
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def expires_at(self) -> float:
        return self.armed_at + self.duration_s

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return not (self._fired or self._cancelled)

    def cancel(self) -> None:
        if not self.pending:
            return
        self._cancelled = True
        handle, self._handle = self._handle, None
        if handle is None:
            return
        if self._loop is not None and not _on_loop_thread(self._loop):
            self._loop.call_soon_threadsafe(handle.cancel)
        else:
            handle.cancel()

    def _fire(self) -> None:
        if not self.pending:
            return
        self._fired = True
        self._handle = None
        self._callback()


def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


class Clock(ABC):
    @abstractmethod
    def now(self) -> float:
        """Monotonic timestamp in seconds."""
        ...

    @abstractmethod
    def after(self, duration_s: float, callback: Callable[[], None]) -> Deadline:
        """Arm a timer that calls ``callback`` once, ``duration_s`` from now."""
        ...


class LoopClock(Clock):
    """Clock backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def after(self, duration_s: float, callback: Callable[[], None]) -> Deadline:
        """
        Arm a timer. Safe to call from any thread.

        ``call_later`` may only run on the loop thread. From any other thread
        the timer is handed to the loop with ``call_soon_threadsafe``, which
        also wakes it, and keeps the expiry measured from the arming instant.
        """
        loop = self.loop
        deadline = Deadline(duration_s, loop.time(), callback)
        deadline._loop = loop
        if _on_loop_thread(loop):
            deadline._handle = loop.call_later(duration_s, deadline._fire)
        else:
            loop.call_soon_threadsafe(self._arm, deadline)
        return deadline

    def _arm(self, deadline: Deadline) -> None:
        if not deadline.pending:
            return
        remaining = max(0.0, deadline.expires_at - self.loop.time())
        deadline._handle = self.loop.call_later(remaining, deadline._fire)


class ManualClock(Clock):
    """
    Virtual clock. Time only moves when ``advance()`` is called.

    Due timers fire in order of expiry; timers with the same expiry fire in
    the order they were armed. Timers armed by a callback during
    ``advance()`` fire in the same call if they fall due within the window.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, Deadline]] = []

    def now(self) -> float:
        return self._now

    def after(self, duration_s: float, callback: Callable[[], None]) -> Deadline:
        deadline = Deadline(duration_s, self._now, callback)
        heapq.heappush(self._queue, (deadline.expires_at, next(self._seq), deadline))
        return deadline

    def advance(self, duration_s: float) -> None:
        if duration_s < 0:
            raise ValueError("ManualClock cannot move backwards")
        target = self._now + duration_s
        while self._queue and self._queue[0][0] <= target:
            expires_at, _, deadline = heapq.heappop(self._queue)
            self._now = max(self._now, expires_at)
            deadline._fire()
        self._now = target

    def run_until_idle(self, limit_s: float = 3600.0) -> None:
        """Advance through every pending timer, up to ``limit_s`` of virtual time."""
        horizon = self._now + limit_s
        while self._queue:
            expires_at, _, deadline = self._queue[0]
            if not deadline.pending:
                heapq.heappop(self._queue)
                continue
            if expires_at > horizon:
                break
            self.advance(max(0.0, expires_at - self._now))

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, d in self._queue if d.pending)
