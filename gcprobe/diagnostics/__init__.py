"""
GCProbe: Diagnostics

The staged timeout state machine and everything it needs: the clock,
the completion gate, the classifier and the report emitter. Process
wiring (OS signals, logoff, exit) lives in ``gcprobe.diagnostics.service``.
"""

from gcprobe.diagnostics.classifier import classify
from gcprobe.diagnostics.clock import Clock, Deadline, LoopClock, ManualClock
from gcprobe.diagnostics.gate import CompletionGate
from gcprobe.diagnostics.machine import DiagnosticStateMachine
from gcprobe.diagnostics.report import ReportEmitter, exit_code_for
from gcprobe.diagnostics.types import (
    CauseCode,
    DeadlineSpec,
    ExternalInterrupt,
    FailureCause,
    GlobalTimedOut,
    InterruptKind,
    MachinePhase,
    RunState,
    RunStateSealedError,
    Signal,
    Stage,
    StageFailed,
    StageSucceeded,
    StageTimedOut,
    Verdict,
    VerdictKind,
)

__all__ = [
    "CauseCode",
    "Clock",
    "CompletionGate",
    "Deadline",
    "DeadlineSpec",
    "DiagnosticStateMachine",
    "ExternalInterrupt",
    "FailureCause",
    "GlobalTimedOut",
    "InterruptKind",
    "LoopClock",
    "MachinePhase",
    "ManualClock",
    "ReportEmitter",
    "RunState",
    "RunStateSealedError",
    "Signal",
    "Stage",
    "StageFailed",
    "StageSucceeded",
    "StageTimedOut",
    "Verdict",
    "VerdictKind",
    "classify",
    "exit_code_for",
]
