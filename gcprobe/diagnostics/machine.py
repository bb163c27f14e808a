"""
GCProbe: Diagnostic State Machine

Walks the four stages in order:

  AUTHENTICATE → ESTABLISH_SESSION → HANDSHAKE_SUBSYSTEM → DATA_PLANE_REQUEST

Each stage gets one fresh deadline when it is entered; the whole run sits
under a separate global deadline. Collaborator callbacks, timer expiries
and OS interrupts all come in through ``deliver()``:

- StageSucceeded for the current, non-final stage advances the run.
- StageSucceeded for the final stage, and every failure, timeout or
  interrupt, goes to the CompletionGate. Only the first one through is
  classified and reported.
- Signals naming a stage the run already left are stale and dropped.

Nothing is retried. The machine never raises out of a collaborator
callback; a collaborator that raises while being driven is reported as a
failure of the stage it was driving.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING

import structlog

from gcprobe.diagnostics.classifier import classify
from gcprobe.diagnostics.gate import CompletionGate
from gcprobe.diagnostics.report import exit_code_for
from gcprobe.diagnostics.types import (
    CauseCode,
    DeadlineSpec,
    ExternalInterrupt,
    FailureCause,
    GlobalTimedOut,
    InterruptKind,
    MachinePhase,
    RunState,
    Signal,
    Stage,
    StageFailed,
    StageSucceeded,
    StageTimedOut,
    Verdict,
    VerdictKind,
)
from gcprobe.primitives.common import new_id

if TYPE_CHECKING:
    from gcprobe.clients.base import Credentials, Identity, Payload, RemoteClients
    from gcprobe.diagnostics.clock import Clock, Deadline
    from gcprobe.diagnostics.report import ReportEmitter

logger = structlog.get_logger()


class DiagnosticStateMachine:
    """
    One probe run. Create, ``start()``, then wait for ``on_complete``.

    A machine instance is single-use; ``start()`` twice is a programming
    error.
    """

    def __init__(
        self,
        clients: RemoteClients,
        clock: Clock,
        reporter: ReportEmitter,
        deadlines: Mapping[Stage, DeadlineSpec] | Iterable[DeadlineSpec],
        global_timeout_s: float,
        target_id: str,
        credentials: Credentials,
        on_complete: Callable[[int], None] | None = None,
        run_id: str | None = None,
    ) -> None:
        specs = deadlines.values() if isinstance(deadlines, Mapping) else deadlines
        self._deadlines: dict[Stage, DeadlineSpec] = {spec.stage: spec for spec in specs}
        missing = [s for s in Stage.ordered() if s not in self._deadlines]
        if missing:
            raise ValueError(f"No deadline configured for stages: {', '.join(missing)}")
        if global_timeout_s <= 0:
            raise ValueError(f"Global timeout must be positive, got {global_timeout_s}")

        self._clients = clients
        self._clock = clock
        self._reporter = reporter
        self._global_timeout_s = global_timeout_s
        self._target_id = target_id
        self._credentials = credentials
        self._on_complete = on_complete

        self._state = RunState(run_id=run_id or new_id(), started_at=clock.now())
        self._gate = CompletionGate(self._state, clock, self._resolve)
        self._lock = threading.RLock()
        self._phase = MachinePhase.AUTHENTICATE
        self._stage_timer: Deadline | None = None
        self._started = False
        self._exit_code: int | None = None
        self._logger = logger.bind(system="probe", run_id=self._state.run_id)

    # ─── Introspection ───────────────────────────────────────────────

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def gate(self) -> CompletionGate:
        return self._gate

    @property
    def phase(self) -> MachinePhase:
        return self._phase

    @property
    def verdict(self) -> Verdict | None:
        return self._state.verdict

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    # ─── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        if self._started:
            raise RuntimeError("DiagnosticStateMachine.start() called twice")
        self._started = True
        self._logger.info(
            "probe_started",
            target_id=self._target_id,
            global_timeout_s=self._global_timeout_s,
        )
        with self._lock:
            self._gate.arm(self._clock.after(self._global_timeout_s, self._on_global_timeout))
            self._clients.session.attach(self._on_session_connected, self._on_session_disconnected)
            self._clients.subsystem.attach(
                self._on_subsystem_connected, self._on_subsystem_disconnected
            )
            self._enter(Stage.first())

    def interrupt(self, kind: InterruptKind) -> bool:
        """Entry point for OS signal handlers."""
        self._logger.warning("probe_interrupted", kind=kind.value, stage=self._state.stage.value)
        return self.deliver(ExternalInterrupt(kind))

    def deliver(self, signal: Signal) -> bool:
        """
        Feed one signal into the machine.

        Returns True if the signal changed the run (advanced it or finalized
        it), False if it was stale or lost the race to finalize.
        """
        with self._lock:
            if isinstance(signal, StageSucceeded) and not signal.is_terminal:
                return self._advance(signal)
            if isinstance(signal, (StageSucceeded, StageTimedOut)) and self._is_stale(signal.stage):
                return False
            return self._finish(signal)

    # ─── Transitions ─────────────────────────────────────────────────

    def _is_stale(self, stage: Stage) -> bool:
        if self._state.finalized or stage == self._state.stage:
            return False
        self._logger.debug(
            "stale_signal_dropped",
            signal_stage=stage.value,
            current_stage=self._state.stage.value,
        )
        return True

    def _advance(self, signal: StageSucceeded) -> bool:
        if self._state.finalized:
            self._gate.try_finalize(signal)
            return False
        if self._is_stale(signal.stage):
            return False
        next_stage = signal.stage.next()
        assert next_stage is not None
        elapsed = self._clock.now() - self._state.stage_started_at[signal.stage]
        if self._stage_timer is not None:
            self._stage_timer.cancel()
            self._stage_timer = None
        self._logger.info(
            "stage_succeeded",
            stage=signal.stage.value,
            elapsed_ms=round(elapsed * 1000),
        )
        self._enter(next_stage)
        return True

    def _enter(self, stage: Stage) -> None:
        self._state.enter(stage, self._clock.now())
        self._phase = MachinePhase.for_stage(stage)
        spec = self._deadlines[stage]
        self._stage_timer = self._gate.arm(
            self._clock.after(spec.duration_s, lambda: self._on_stage_timeout(stage))
        )
        self._logger.info("stage_entered", stage=stage.value, deadline_s=spec.duration_s)
        self._drive(stage)

    def _drive(self, stage: Stage) -> None:
        try:
            if stage == Stage.AUTHENTICATE:
                self._clients.auth.login(
                    self._credentials, self._on_logged_on, self._on_login_failed
                )
            elif stage == Stage.ESTABLISH_SESSION:
                self._clients.session.open()
            elif stage == Stage.DATA_PLANE_REQUEST:
                self._clients.data_plane.request(self._target_id, self._on_data_plane_result)
            # HANDSHAKE_SUBSYSTEM is driven by the remote once the session is up
        except Exception as exc:
            self._logger.error(
                "collaborator_raised",
                stage=stage.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self.deliver(
                StageFailed(stage, FailureCause(CauseCode.UNKNOWN, detail=str(exc)))
            )

    def _finish(self, signal: Signal) -> bool:
        if not self._gate.try_finalize(signal):
            return False
        self._stage_timer = None
        if isinstance(signal, (GlobalTimedOut, ExternalInterrupt)):
            self._phase = MachinePhase.ABORTED
        else:
            self._phase = MachinePhase.FINALIZED

        verdict = self._state.verdict
        assert verdict is not None
        try:
            self._exit_code = self._reporter.emit(verdict)
        except Exception as exc:
            # on_complete fires even when the report cannot be written
            self._exit_code = exit_code_for(verdict)
            self._logger.error(
                "report_emit_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        self._logger.info(
            "probe_finalized",
            verdict=verdict.kind.value,
            stage=verdict.stage.value,
            total_elapsed_ms=round(verdict.total_elapsed_s * 1000),
            exit_code=self._exit_code,
        )
        if self._on_complete is not None:
            self._on_complete(self._exit_code)
        return True

    def _resolve(self, signal: Signal, now: float) -> Verdict:
        stage = self._state.stage
        timings = self._state.elapsed_by_stage(now)
        try:
            return classify(stage, signal, timings, run_id=self._state.run_id)
        except Exception as exc:
            # Every accepted signal seals a verdict
            self._logger.exception("classification_failed", signal=type(signal).__name__)
            return Verdict(
                kind=VerdictKind.PROTOCOL_MISMATCH,
                stage=stage,
                diagnosis=f"Could not interpret {type(signal).__name__} during {stage.label}: {exc}",
                stage_elapsed_s=timings,
                total_elapsed_s=sum(timings.values()),
                run_id=self._state.run_id,
            )

    # ─── Timer callbacks ─────────────────────────────────────────────

    def _on_stage_timeout(self, stage: Stage) -> None:
        self._logger.warning("stage_timeout", stage=stage.value)
        self.deliver(StageTimedOut(stage))

    def _on_global_timeout(self) -> None:
        self._logger.warning("global_timeout", stage=self._state.stage.value)
        self.deliver(GlobalTimedOut())

    # ─── Collaborator callbacks ──────────────────────────────────────

    def _on_logged_on(self, identity: Identity) -> None:
        self._logger.info(
            "login_succeeded",
            account_id=identity.account_id,
            display_name=identity.display_name or "Unknown",
        )
        self.deliver(StageSucceeded(Stage.AUTHENTICATE, identity))

    def _on_login_failed(self, cause: FailureCause) -> None:
        self._logger.warning("login_failed", cause=cause.code.value, raw_code=cause.raw_code)
        self.deliver(StageFailed(Stage.AUTHENTICATE, cause))

    def _on_session_connected(self) -> None:
        self.deliver(StageSucceeded(Stage.ESTABLISH_SESSION))

    def _on_session_disconnected(self, reason: str) -> None:
        self._logger.warning("session_disconnected", reason=reason)
        cause = FailureCause(CauseCode.SESSION_DISCONNECTED, detail=reason)
        self.deliver(StageFailed(self._state.stage, cause))

    def _on_subsystem_connected(self) -> None:
        self.deliver(StageSucceeded(Stage.HANDSHAKE_SUBSYSTEM))

    def _on_subsystem_disconnected(self, reason: str) -> None:
        self._logger.warning("subsystem_disconnected", reason=reason)
        cause = FailureCause(CauseCode.SUBSYSTEM_DISCONNECTED, detail=reason)
        self.deliver(StageFailed(self._state.stage, cause))

    def _on_data_plane_result(self, payload: Payload) -> None:
        self.deliver(StageSucceeded(Stage.DATA_PLANE_REQUEST, payload))
