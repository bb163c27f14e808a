"""
GCProbe: Stage Result Classifier

Pure mapping from (stage reached, accepted signal, stage timings) to a
Verdict. No I/O, no clock access. Every (Stage, Signal) pair the machine can
produce has a rule, so ``classify`` never raises for well-formed input.

Precedence: interrupt and global timeout ignore the stage entirely; after
that the signal variant decides, and the cause code refines failures.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from gcprobe.diagnostics.types import (
    CauseCode,
    ExternalInterrupt,
    FailureCause,
    GlobalTimedOut,
    InterruptKind,
    Signal,
    Stage,
    StageFailed,
    StageSucceeded,
    StageTimedOut,
    Verdict,
    VerdictKind,
)

_DISCONNECT_CAUSES = frozenset({CauseCode.SESSION_DISCONNECTED, CauseCode.SUBSYSTEM_DISCONNECTED})

_SOFT_BAN_HINTS = [
    "Account-level soft ban",
    "IP/hardware-level soft ban",
    "If this passes from another host but fails here, the ban is likely tied to this IP/hardware",
]

_TIMEOUT_HINTS: dict[Stage, list[str]] = {
    Stage.AUTHENTICATE: [
        "Login servers unreachable",
        "Network connectivity problems",
    ],
    Stage.ESTABLISH_SESSION: [
        "Session servers not acknowledging presence",
        "Network connectivity problems",
    ],
    Stage.HANDSHAKE_SUBSYSTEM: [
        "Game coordinator soft ban",
        "Game coordinator outage",
        "Network connectivity problems",
    ],
    Stage.DATA_PLANE_REQUEST: [
        "Game coordinator is throttling requests (soft ban)",
        "Target id is invalid",
        "Network connectivity problems",
    ],
}

_GLOBAL_TIMEOUT_HINTS = [
    "Login issues",
    "Game coordinator connection soft ban",
    "Network connectivity problems",
]


def classify(
    stage: Stage,
    signal: Signal,
    stage_elapsed_s: Mapping[Stage, float] | None = None,
    run_id: str = "",
) -> Verdict:
    """Map the stage reached and the accepted signal to a Verdict."""
    timings = dict(stage_elapsed_s or {})
    kind, diagnosis, hints, details = _resolve(stage, signal)
    return Verdict(
        kind=kind,
        stage=stage,
        diagnosis=diagnosis,
        hints=hints,
        details=details,
        stage_elapsed_s=timings,
        total_elapsed_s=sum(timings.values()),
        run_id=run_id,
    )


def _resolve(
    stage: Stage, signal: Signal
) -> tuple[VerdictKind, str, list[str], dict[str, Any]]:
    if isinstance(signal, ExternalInterrupt):
        if signal.kind == InterruptKind.SIGTERM:
            text = f"Terminated during {stage.label}"
        else:
            text = f"Interrupted by operator during {stage.label}"
        return VerdictKind.INTERRUPTED, text, [], {"signal": signal.kind.value}

    if isinstance(signal, GlobalTimedOut):
        return (
            VerdictKind.GLOBAL_TIMEOUT,
            f"Run exceeded its global deadline while in {stage.label}",
            list(_GLOBAL_TIMEOUT_HINTS),
            {},
        )

    if isinstance(signal, StageTimedOut):
        return _classify_timeout(signal.stage)

    if isinstance(signal, StageFailed):
        if signal.stage == Stage.AUTHENTICATE and signal.cause.code not in _DISCONNECT_CAUSES:
            return _classify_auth_failure(signal.cause)
        return _classify_disconnect(signal.stage, signal.cause)

    if isinstance(signal, StageSucceeded):
        if signal.stage == Stage.DATA_PLANE_REQUEST:
            return _classify_payload(signal.payload)
        return (
            VerdictKind.PROTOCOL_MISMATCH,
            f"Run ended after {signal.stage.label} succeeded, before the profile request",
            [],
            {},
        )

    return (
        VerdictKind.PROTOCOL_MISMATCH,
        f"Unrecognised signal {type(signal).__name__} during {stage.label}",
        [],
        {},
    )


def _classify_auth_failure(
    cause: FailureCause,
) -> tuple[VerdictKind, str, list[str], dict[str, Any]]:
    details: dict[str, Any] = {"cause": cause.code.value}
    if cause.raw_code is not None:
        details["raw_code"] = cause.raw_code

    if cause.code == CauseCode.INVALID_CREDENTIAL:
        return VerdictKind.CREDENTIAL_FAILURE, "Invalid credentials", [], details
    if cause.code == CauseCode.TWO_FACTOR_MISMATCH:
        return (
            VerdictKind.CREDENTIAL_FAILURE,
            "2FA code mismatch",
            ["Check the shared secret", "Check the host clock is in sync"],
            details,
        )
    if cause.code == CauseCode.TWO_FACTOR_REQUIRED:
        return (
            VerdictKind.CREDENTIAL_FAILURE,
            "2FA required but not provided correctly",
            ["Check the shared secret"],
            details,
        )
    if cause.code == CauseCode.RATE_LIMITED:
        return (
            VerdictKind.RATE_LIMITED,
            "Login rate limited",
            ["Wait before retrying; repeated logins extend the limit"],
            details,
        )
    raw = cause.raw_code if cause.raw_code is not None else cause.code.value
    text = f"Unknown login error ({raw})"
    if cause.detail:
        text = f"{text}: {cause.detail}"
    return VerdictKind.PROTOCOL_MISMATCH, text, [], details


def _classify_timeout(stage: Stage) -> tuple[VerdictKind, str, list[str], dict[str, Any]]:
    if stage == Stage.DATA_PLANE_REQUEST:
        text = "Profile request timed out; soft throttling suspected"
        hints = _TIMEOUT_HINTS[stage] + _SOFT_BAN_HINTS
    elif stage == Stage.HANDSHAKE_SUBSYSTEM:
        text = "GC handshake timed out; GC is not accepting connections (soft ban likely)"
        hints = list(_TIMEOUT_HINTS[stage])
    elif stage == Stage.ESTABLISH_SESSION:
        text = "Session did not come up before its deadline"
        hints = list(_TIMEOUT_HINTS[stage])
    else:
        text = "Login did not complete before its deadline"
        hints = list(_TIMEOUT_HINTS[stage])
    return VerdictKind.STAGE_TIMEOUT, text, hints, {"timed_out_stage": stage.value}


def _classify_disconnect(
    stage: Stage, cause: FailureCause
) -> tuple[VerdictKind, str, list[str], dict[str, Any]]:
    channel = "GC" if cause.code == CauseCode.SUBSYSTEM_DISCONNECTED else "Session"
    text = f"{channel} disconnected during {stage.label}"
    if cause.detail:
        text = f"{text}: {cause.detail}"
    details: dict[str, Any] = {"cause": cause.code.value}
    if cause.raw_code is not None:
        details["raw_code"] = cause.raw_code
    return (
        VerdictKind.UNEXPECTED_DISCONNECT,
        text,
        ["This may indicate a soft ban or a connection issue"],
        details,
    )


def _classify_payload(payload: Any) -> tuple[VerdictKind, str, list[str], dict[str, Any]]:
    if not payload:
        return VerdictKind.NO_DATA_RETURNED, "Profile request failed: no data received", [], {}
    return (
        VerdictKind.SUCCESS,
        "No soft ban detected; account and IP/hardware are clean",
        [],
        summarize_profile(payload),
    )


def summarize_profile(payload: Any) -> dict[str, Any]:
    """Pick the fields worth printing out of a profile payload."""
    if not isinstance(payload, Mapping):
        return {"payload": str(payload)}
    # The remote decides the shape of every field; nothing here may raise
    medals = payload.get("medals")
    display_items = medals.get("display_items_defidx") if isinstance(medals, Mapping) else None
    commendation = payload.get("commendation")
    if isinstance(commendation, Mapping):
        commendations: Any = {str(k): _plain(v) for k, v in commendation.items()}
    else:
        commendations = str(commendation) if commendation else {}
    return {
        "account_id": _plain(payload.get("account_id")),
        "total_medals": len(display_items) if isinstance(display_items, (list, tuple)) else 0,
        "commendations": commendations,
        "level": _plain(payload.get("player_level")) or "Unknown",
    }


def _plain(value: Any) -> Any:
    """Keep JSON scalars as they are; render anything else as text."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
