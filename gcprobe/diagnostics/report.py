"""
GCProbe: Report Emitter

Renders the final Verdict for the operator and picks the exit code.
One emitter renders one report; a second ``emit()`` is refused.
"""

from __future__ import annotations

import sys
from typing import TextIO

import orjson
import structlog

from gcprobe.diagnostics.types import Stage, Verdict, VerdictKind

logger = structlog.get_logger()

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

_RULE = "=" * 60


def exit_code_for(verdict: Verdict) -> int:
    return EXIT_SUCCESS if verdict.kind == VerdictKind.SUCCESS else EXIT_FAILURE


def _ms(seconds: float) -> str:
    return f"{round(seconds * 1000)}ms"


class ReportEmitter:
    """
    Writes the final report to an append-only text stream.

    ``fmt`` is ``"text"`` for the operator-facing layout or ``"json"`` for a
    single machine-readable line.
    """

    def __init__(self, stream: TextIO | None = None, fmt: str = "text") -> None:
        if fmt not in ("text", "json"):
            raise ValueError(f"Unknown report format: {fmt}")
        self._stream = stream if stream is not None else sys.stdout
        self._fmt = fmt
        self._emitted = False

    @property
    def emitted(self) -> bool:
        return self._emitted

    def emit(self, verdict: Verdict) -> int:
        if self._emitted:
            raise RuntimeError("ReportEmitter.emit() called twice for the same run")
        self._emitted = True
        code = exit_code_for(verdict)
        if self._fmt == "json":
            self._write_json(verdict, code)
        else:
            self._write_text(verdict)
        self._stream.flush()
        logger.debug("report_emitted", verdict=verdict.kind.value, exit_code=code)
        return code

    def _write_json(self, verdict: Verdict, code: int) -> None:
        body = verdict.model_dump(mode="json")
        body["exit_code"] = code
        self._stream.write(orjson.dumps(body).decode() + "\n")

    def _write_text(self, verdict: Verdict) -> None:
        lines = [
            "",
            _RULE,
            "[DONE] PROBE COMPLETED",
            f"Result    : {verdict.kind.value.upper()}",
            f"Run       : {verdict.run_id}",
            f"Total     : {_ms(verdict.total_elapsed_s)}",
            "Stages:",
        ]
        lines.extend(self._stage_lines(verdict))
        lines.append(f"Diagnosis : {verdict.diagnosis}")

        if verdict.details and verdict.kind == VerdictKind.SUCCESS:
            lines.append("Profile data:")
            for key, value in verdict.details.items():
                lines.append(f"   - {key.replace('_', ' ').title()}: {value}")

        if verdict.hints:
            lines.append("Possible causes:")
            lines.extend(f"   - {hint}" for hint in verdict.hints)

        lines.append(_RULE)
        lines.extend(self._banner(verdict))
        self._stream.write("\n".join(lines) + "\n")

    def _stage_lines(self, verdict: Verdict) -> list[str]:
        out: list[str] = []
        width = max(len(stage.label) for stage in Stage)
        for stage in Stage.ordered():
            elapsed = verdict.stage_elapsed_s.get(stage)
            if elapsed is None:
                out.append(f"  [--]   {stage.label:<{width}}  not reached")
                continue
            passed = stage != verdict.stage or verdict.kind == VerdictKind.SUCCESS
            mark = "[OK]  " if passed else "[FAIL]"
            out.append(f"  {mark} {stage.label:<{width}}  {_ms(elapsed)}")
        return out

    def _banner(self, verdict: Verdict) -> list[str]:
        if verdict.kind == VerdictKind.SUCCESS:
            return [
                "[OK] ALL STAGES PASSED",
                "[OK] Account is NOT banned",
                "[OK] IP/Hardware is NOT banned",
                "[OK] GC connection is working",
            ]
        if verdict.kind == VerdictKind.STAGE_TIMEOUT and verdict.stage in (
            Stage.HANDSHAKE_SUBSYSTEM,
            Stage.DATA_PLANE_REQUEST,
        ):
            return [
                "[SOFT BAN DETECTED] GC is not responding to requests",
            ]
        return [f"[FAIL] {verdict.diagnosis}"]
