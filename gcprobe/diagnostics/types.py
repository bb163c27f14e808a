"""
GCProbe: Diagnostic Type Definitions

Stages, signals, verdicts and the mutable run record.

Design notes:
- Signal is a closed tagged union. Every asynchronous source (collaborator
  callback, stage timer, global timer, OS signal handler) produces exactly
  one of these and hands it to the machine; the CompletionGate accepts the
  first and discards the rest.
- Verdict is immutable. It is built once by the classifier inside the gate
  and then only read (by the report emitter and by tests).
- RunState refuses writes once sealed. A write after sealing means the gate
  let two finalizations through, which is a programming error.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field

from gcprobe.primitives.common import GCProbeBaseModel

# ─── Enums ────────────────────────────────────────────────────────


class Stage(enum.StrEnum):
    """One ordered step of the probe. Each stage depends on its predecessor."""

    AUTHENTICATE = "authenticate"
    ESTABLISH_SESSION = "establish_session"
    HANDSHAKE_SUBSYSTEM = "handshake_subsystem"
    DATA_PLANE_REQUEST = "data_plane_request"

    @classmethod
    def ordered(cls) -> list[Stage]:
        return list(cls)

    @classmethod
    def first(cls) -> Stage:
        return cls.AUTHENTICATE

    def next(self) -> Stage | None:
        stages = Stage.ordered()
        idx = stages.index(self)
        return stages[idx + 1] if idx + 1 < len(stages) else None

    @property
    def is_last(self) -> bool:
        return self.next() is None

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS: dict[Stage, str] = {
    Stage.AUTHENTICATE: "Login",
    Stage.ESTABLISH_SESSION: "Session",
    Stage.HANDSHAKE_SUBSYSTEM: "GC Handshake",
    Stage.DATA_PLANE_REQUEST: "Profile Request",
}


class MachinePhase(enum.StrEnum):
    """Where the state machine is: a live stage or one of the terminal states."""

    AUTHENTICATE = "authenticate"
    ESTABLISH_SESSION = "establish_session"
    HANDSHAKE_SUBSYSTEM = "handshake_subsystem"
    DATA_PLANE_REQUEST = "data_plane_request"
    FINALIZED = "finalized"
    ABORTED = "aborted"  # Finalized by interrupt or global timeout

    @classmethod
    def for_stage(cls, stage: Stage) -> MachinePhase:
        return cls(stage.value)


class CauseCode(enum.StrEnum):
    """Why a collaborator reported failure. Supplied by the clients, never parsed from text."""

    INVALID_CREDENTIAL = "invalid_credential"
    TWO_FACTOR_MISMATCH = "two_factor_mismatch"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    RATE_LIMITED = "rate_limited"
    SESSION_DISCONNECTED = "session_disconnected"
    SUBSYSTEM_DISCONNECTED = "subsystem_disconnected"
    UNKNOWN = "unknown"


class InterruptKind(enum.StrEnum):
    SIGINT = "SIGINT"
    SIGTERM = "SIGTERM"


class VerdictKind(enum.StrEnum):
    SUCCESS = "success"
    CREDENTIAL_FAILURE = "credential_failure"
    PROTOCOL_MISMATCH = "protocol_mismatch"
    RATE_LIMITED = "rate_limited"
    STAGE_TIMEOUT = "stage_timeout"
    GLOBAL_TIMEOUT = "global_timeout"
    INTERRUPTED = "interrupted"
    NO_DATA_RETURNED = "no_data_returned"
    UNEXPECTED_DISCONNECT = "unexpected_disconnect"


# ─── Signals ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class FailureCause:
    """A collaborator failure. ``raw_code`` is the remote's own result code, if any."""

    code: CauseCode
    detail: str = ""
    raw_code: str | None = None


@dataclass(frozen=True)
class Signal:
    """Base of every event that can finalize a run."""

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class StageSucceeded(Signal):
    stage: Stage
    payload: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_last


@dataclass(frozen=True)
class StageFailed(Signal):
    stage: Stage
    cause: FailureCause


@dataclass(frozen=True)
class StageTimedOut(Signal):
    stage: Stage


@dataclass(frozen=True)
class GlobalTimedOut(Signal):
    pass


@dataclass(frozen=True)
class ExternalInterrupt(Signal):
    kind: InterruptKind = InterruptKind.SIGINT


@dataclass(frozen=True)
class DeadlineSpec:
    """Timeout budget for a single stage, measured from the moment the stage is entered."""

    stage: Stage
    duration_s: float

    def __post_init__(self) -> None:
        if self.duration_s <= 0:
            raise ValueError(f"Deadline for {self.stage} must be positive, got {self.duration_s}")


# ─── Verdict ──────────────────────────────────────────────────────


class Verdict(GCProbeBaseModel):
    """
    Final classification of where and why a run ended.

    ``stage_elapsed_s`` holds one entry per stage that was entered, in
    stage order; the last entry runs up to the finalization instant.
    """

    model_config = {"frozen": True}

    kind: VerdictKind
    stage: Stage
    diagnosis: str
    hints: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
    stage_elapsed_s: dict[Stage, float] = Field(default_factory=dict)
    total_elapsed_s: float = 0.0
    run_id: str = ""

    @property
    def succeeded(self) -> bool:
        return self.kind == VerdictKind.SUCCESS


# ─── Run State ────────────────────────────────────────────────────


class RunStateSealedError(AssertionError):
    """Raised when anything writes to a RunState after it was finalized."""


@dataclass
class RunState:
    """
    Mutable record of a single run, owned by the state machine and its gate.

    ``seal()`` is the only way to set ``finalized`` and ``verdict``; after
    it returns every attribute assignment raises RunStateSealedError.
    """

    run_id: str
    started_at: float
    stage: Stage = Stage.AUTHENTICATE
    stage_started_at: dict[Stage, float] = field(default_factory=dict)
    finalized: bool = False
    verdict: Verdict | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("finalized", False):
            raise RunStateSealedError(
                f"RunState {self.__dict__.get('run_id')} is finalized; refusing to set {name!r}"
            )
        super().__setattr__(name, value)

    def enter(self, stage: Stage, at: float) -> None:
        if self.finalized:
            raise RunStateSealedError(f"Cannot enter {stage} on a finalized run")
        self.stage = stage
        # Mutating the dict in place bypasses __setattr__, hence the explicit check above
        self.stage_started_at[stage] = at

    def elapsed_by_stage(self, now: float) -> dict[Stage, float]:
        """Time spent in each entered stage, the current one measured up to ``now``."""
        entered = [s for s in Stage.ordered() if s in self.stage_started_at]
        result: dict[Stage, float] = {}
        for i, stage in enumerate(entered):
            end = self.stage_started_at[entered[i + 1]] if i + 1 < len(entered) else now
            result[stage] = max(0.0, end - self.stage_started_at[stage])
        return result

    def seal(self, verdict: Verdict) -> None:
        if self.finalized:
            raise RunStateSealedError(f"RunState {self.run_id} was already sealed")
        self.verdict = verdict
        self.finalized = True
