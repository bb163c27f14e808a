"""
Tests for the Stage Result Classifier.

Covers:
  - Login failure causes (credentials, 2FA, rate limit, catch-all)
  - Timeouts per stage, including the soft-throttling diagnosis
  - Disconnects, including during the data-plane request
  - Payload handling on the final stage
  - Interrupt and global timeout regardless of stage
  - Totality over every reachable (stage, signal) pair
"""

from __future__ import annotations

import pytest

from gcprobe.diagnostics.classifier import classify, summarize_profile
from gcprobe.diagnostics.types import (
    CauseCode,
    ExternalInterrupt,
    FailureCause,
    GlobalTimedOut,
    InterruptKind,
    Stage,
    StageFailed,
    StageSucceeded,
    StageTimedOut,
    VerdictKind,
)

PROFILE = {
    "account_id": 1596465619,
    "medals": {"display_items_defidx": [874, 4551, 6034]},
    "commendation": {"cmd_friendly": 3},
    "player_level": 21,
}


def _auth_failure(code: CauseCode, raw: str | None = None, detail: str = "") -> StageFailed:
    return StageFailed(Stage.AUTHENTICATE, FailureCause(code, detail=detail, raw_code=raw))


class TestAuthenticateFailures:
    def test_invalid_credential(self):
        verdict = classify(Stage.AUTHENTICATE, _auth_failure(CauseCode.INVALID_CREDENTIAL, "5"))
        assert verdict.kind == VerdictKind.CREDENTIAL_FAILURE
        assert verdict.diagnosis == "Invalid credentials"
        assert verdict.details["raw_code"] == "5"

    @pytest.mark.parametrize(
        "code, text",
        [
            (CauseCode.TWO_FACTOR_MISMATCH, "2FA code mismatch"),
            (CauseCode.TWO_FACTOR_REQUIRED, "2FA required but not provided correctly"),
        ],
    )
    def test_two_factor_is_credential_failure_with_own_text(self, code, text):
        verdict = classify(Stage.AUTHENTICATE, _auth_failure(code))
        assert verdict.kind == VerdictKind.CREDENTIAL_FAILURE
        assert verdict.diagnosis == text

    def test_rate_limited(self):
        verdict = classify(Stage.AUTHENTICATE, _auth_failure(CauseCode.RATE_LIMITED, "84"))
        assert verdict.kind == VerdictKind.RATE_LIMITED

    def test_unknown_cause_is_protocol_mismatch_with_raw_code(self):
        verdict = classify(
            Stage.AUTHENTICATE, _auth_failure(CauseCode.UNKNOWN, "63", detail="AccountLogonDenied")
        )
        assert verdict.kind == VerdictKind.PROTOCOL_MISMATCH
        assert "63" in verdict.diagnosis
        assert "AccountLogonDenied" in verdict.diagnosis

    def test_unknown_cause_without_raw_code_names_the_tag(self):
        verdict = classify(Stage.AUTHENTICATE, _auth_failure(CauseCode.UNKNOWN))
        assert "unknown" in verdict.diagnosis

    def test_disconnect_during_login_is_disconnect(self):
        verdict = classify(Stage.AUTHENTICATE, _auth_failure(CauseCode.SESSION_DISCONNECTED))
        assert verdict.kind == VerdictKind.UNEXPECTED_DISCONNECT


class TestTimeouts:
    def test_session_and_handshake_diagnoses_differ(self):
        session = classify(Stage.ESTABLISH_SESSION, StageTimedOut(Stage.ESTABLISH_SESSION))
        handshake = classify(Stage.HANDSHAKE_SUBSYSTEM, StageTimedOut(Stage.HANDSHAKE_SUBSYSTEM))
        assert session.kind == handshake.kind == VerdictKind.STAGE_TIMEOUT
        assert "Session" in session.diagnosis
        assert "handshake" in handshake.diagnosis
        assert session.diagnosis != handshake.diagnosis

    def test_data_plane_timeout_suspects_soft_throttling(self):
        verdict = classify(Stage.DATA_PLANE_REQUEST, StageTimedOut(Stage.DATA_PLANE_REQUEST))
        assert verdict.kind == VerdictKind.STAGE_TIMEOUT
        assert "soft throttling suspected" in verdict.diagnosis
        assert any("soft ban" in hint for hint in verdict.hints)

    def test_login_timeout(self):
        verdict = classify(Stage.AUTHENTICATE, StageTimedOut(Stage.AUTHENTICATE))
        assert verdict.kind == VerdictKind.STAGE_TIMEOUT
        assert verdict.details["timed_out_stage"] == "authenticate"


class TestDisconnects:
    def test_handshake_disconnect(self):
        signal = StageFailed(
            Stage.HANDSHAKE_SUBSYSTEM,
            FailureCause(CauseCode.SUBSYSTEM_DISCONNECTED, detail="GC_GOING_DOWN"),
        )
        verdict = classify(Stage.HANDSHAKE_SUBSYSTEM, signal)
        assert verdict.kind == VerdictKind.UNEXPECTED_DISCONNECT
        assert "GC_GOING_DOWN" in verdict.diagnosis

    def test_data_plane_disconnect_is_not_a_timeout(self):
        signal = StageFailed(
            Stage.DATA_PLANE_REQUEST, FailureCause(CauseCode.SUBSYSTEM_DISCONNECTED)
        )
        verdict = classify(Stage.DATA_PLANE_REQUEST, signal)
        assert verdict.kind == VerdictKind.UNEXPECTED_DISCONNECT

    def test_session_disconnect_names_session(self):
        signal = StageFailed(Stage.ESTABLISH_SESSION, FailureCause(CauseCode.SESSION_DISCONNECTED))
        verdict = classify(Stage.ESTABLISH_SESSION, signal)
        assert verdict.diagnosis.startswith("Session disconnected")


class TestDataPlanePayload:
    def test_payload_is_success(self):
        verdict = classify(
            Stage.DATA_PLANE_REQUEST, StageSucceeded(Stage.DATA_PLANE_REQUEST, PROFILE)
        )
        assert verdict.kind == VerdictKind.SUCCESS
        assert verdict.succeeded
        assert verdict.details["account_id"] == 1596465619
        assert verdict.details["total_medals"] == 3

    @pytest.mark.parametrize("payload", [None, {}])
    def test_empty_payload_is_no_data(self, payload):
        verdict = classify(
            Stage.DATA_PLANE_REQUEST, StageSucceeded(Stage.DATA_PLANE_REQUEST, payload)
        )
        assert verdict.kind == VerdictKind.NO_DATA_RETURNED

    def test_summarize_profile_defaults(self):
        summary = summarize_profile({"account_id": 7})
        assert summary == {
            "account_id": 7,
            "total_medals": 0,
            "commendations": {},
            "level": "Unknown",
        }

    @pytest.mark.parametrize(
        "payload, expected",
        [
            (
                {"account_id": 7, "commendation": [1, 2, 3]},
                {"account_id": 7, "total_medals": 0, "commendations": "[1, 2, 3]", "level": "Unknown"},
            ),
            (
                {"account_id": 7, "medals": {"display_items_defidx": 5}, "player_level": 3},
                {"account_id": 7, "total_medals": 0, "commendations": {}, "level": 3},
            ),
            (
                {"medals": "none", "commendation": {1: [2]}, "player_level": [4]},
                {"account_id": None, "total_medals": 0, "commendations": {"1": "[2]"}, "level": "[4]"},
            ),
        ],
    )
    def test_summarize_profile_tolerates_odd_shapes(self, payload, expected):
        assert summarize_profile(payload) == expected

    def test_odd_payload_is_still_success(self):
        verdict = classify(
            Stage.DATA_PLANE_REQUEST,
            StageSucceeded(Stage.DATA_PLANE_REQUEST, {"account_id": 7, "commendation": 12}),
        )
        assert verdict.kind == VerdictKind.SUCCESS
        assert verdict.details["commendations"] == "12"


class TestOverrides:
    @pytest.mark.parametrize("stage", list(Stage))
    def test_interrupt_at_any_stage(self, stage):
        verdict = classify(stage, ExternalInterrupt(InterruptKind.SIGINT))
        assert verdict.kind == VerdictKind.INTERRUPTED
        assert verdict.stage == stage

    def test_sigterm_reads_as_terminated(self):
        verdict = classify(Stage.HANDSHAKE_SUBSYSTEM, ExternalInterrupt(InterruptKind.SIGTERM))
        assert verdict.diagnosis.startswith("Terminated")

    @pytest.mark.parametrize("stage", list(Stage))
    def test_global_timeout_at_any_stage(self, stage):
        verdict = classify(stage, GlobalTimedOut())
        assert verdict.kind == VerdictKind.GLOBAL_TIMEOUT


class TestTotality:
    def _signals_for(self, stage: Stage) -> list:
        signals = [
            StageSucceeded(stage, None),
            StageSucceeded(stage, PROFILE),
            StageTimedOut(stage),
            GlobalTimedOut(),
            ExternalInterrupt(InterruptKind.SIGINT),
            ExternalInterrupt(InterruptKind.SIGTERM),
        ]
        signals.extend(StageFailed(stage, FailureCause(code)) for code in CauseCode)
        return signals

    @pytest.mark.parametrize("stage", list(Stage))
    def test_every_pair_has_a_verdict(self, stage):
        for signal in self._signals_for(stage):
            verdict = classify(stage, signal)
            assert verdict.kind in set(VerdictKind)
            assert verdict.diagnosis

    def test_only_final_stage_success_can_be_success(self):
        for stage in Stage:
            verdict = classify(stage, StageSucceeded(stage, PROFILE))
            if stage == Stage.DATA_PLANE_REQUEST:
                assert verdict.kind == VerdictKind.SUCCESS
            else:
                assert verdict.kind == VerdictKind.PROTOCOL_MISMATCH

    def test_timings_carried_into_verdict(self):
        timings = {Stage.AUTHENTICATE: 0.05, Stage.ESTABLISH_SESSION: 0.1}
        verdict = classify(Stage.ESTABLISH_SESSION, GlobalTimedOut(), timings, run_id="run-1")
        assert verdict.stage_elapsed_s == timings
        assert verdict.total_elapsed_s == pytest.approx(0.15)
        assert verdict.run_id == "run-1"
