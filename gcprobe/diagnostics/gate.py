"""
GCProbe: Completion Gate

Exactly-once finalization. Five independent sources race to end a run:
the stage success callback, the stage timer, the global timer, and the
SIGINT and SIGTERM handlers. The first to reach ``try_finalize`` wins; its
signal is classified and sealed into the RunState in one locked step.
Everyone after that gets False and nothing else happens.

On the winning call every timer registered through ``arm()`` is cancelled
so nothing fires into a finished run or outlives the process.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from gcprobe.diagnostics.clock import Clock, Deadline
from gcprobe.diagnostics.types import RunState, Signal, Verdict

logger = structlog.get_logger()

VerdictResolver = Callable[[Signal, float], Verdict]


class CompletionGate:
    """
    First-wins compare-and-set over ``RunState.finalized``.

    ``resolve`` turns the winning signal and the finalization timestamp into
    a Verdict. It runs under the gate lock and must not call back into the
    gate.
    """

    def __init__(self, state: RunState, clock: Clock, resolve: VerdictResolver) -> None:
        self._state = state
        self._clock = clock
        self._resolve = resolve
        self._lock = threading.Lock()
        self._timers: list[Deadline] = []
        self._winner: Signal | None = None
        self._discarded = 0
        self._logger = logger.bind(system="gate", run_id=state.run_id)

    @property
    def finalized(self) -> bool:
        return self._state.finalized

    @property
    def winner(self) -> Signal | None:
        return self._winner

    @property
    def discarded_count(self) -> int:
        return self._discarded

    def arm(self, deadline: Deadline) -> Deadline:
        """
        Register a timer for cancellation on finalization.

        Arming after finalization cancels the timer straight away.
        """
        with self._lock:
            if self._state.finalized:
                deadline.cancel()
                return deadline
            self._timers = [t for t in self._timers if t.pending]
            self._timers.append(deadline)
        return deadline

    def try_finalize(self, signal: Signal) -> bool:
        with self._lock:
            if self._state.finalized:
                self._discarded += 1
                self._logger.debug(
                    "finalize_discarded",
                    signal=type(signal).__name__,
                    winner=type(self._winner).__name__,
                )
                return False
            verdict = self._resolve(signal, self._clock.now())
            self._state.seal(verdict)
            self._winner = signal
            timers, self._timers = self._timers, []

        for timer in timers:
            timer.cancel()
        self._logger.info(
            "finalize_accepted",
            signal=type(signal).__name__,
            verdict=verdict.kind.value,
            timers_cancelled=len(timers),
        )
        return True
