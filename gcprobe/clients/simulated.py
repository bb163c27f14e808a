"""
GCProbe: Simulated Remote

An in-process stand-in for the login servers, the session servers, the
game coordinator and its profile endpoint. Every answer is scheduled on the
probe's own Clock, so a simulated run behaves exactly like a live one with
respect to deadlines, and runs deterministically under a ManualClock.

Each stage follows its ScenarioStep:

  succeed  answer positively after ``delay_ms``
  fail     answer negatively after ``delay_ms`` (login: result code, others: disconnect)
  silent   never answer; only a deadline can end the stage
  empty    data plane only: answer with no payload
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from gcprobe.clients.base import (
    AuthenticationClient,
    Credentials,
    DataPlaneClient,
    Identity,
    Payload,
    RemoteClients,
    SessionClient,
    SubsystemClient,
    cause_from_result_code,
)
from gcprobe.config import ScenarioStep
from gcprobe.diagnostics.clock import Clock, Deadline
from gcprobe.diagnostics.types import FailureCause, Stage

logger = structlog.get_logger()

_INVALID_PASSWORD = 5


def _noop(*_: Any) -> None:
    return None


class SimulatedRemote:
    """Shared state behind the four simulated clients."""

    def __init__(
        self,
        clock: Clock,
        scenario: Mapping[Stage, ScenarioStep] | None = None,
        profile: Mapping[str, Any] | None = None,
        time_scale: float = 1.0,
    ) -> None:
        self._clock = clock
        self._scenario = dict(scenario or {})
        self._profile = dict(profile or {})
        self._time_scale = time_scale
        self._pending: list[Deadline] = []
        self.logged_off = False
        self.requests: list[str] = []

        self.on_session_connected: Callable[[], None] = _noop
        self.on_session_disconnected: Callable[[str], None] = _noop
        self.on_subsystem_connected: Callable[[], None] = _noop
        self.on_subsystem_disconnected: Callable[[str], None] = _noop

    def step(self, stage: Stage) -> ScenarioStep:
        return self._scenario.get(stage) or ScenarioStep()

    def schedule(self, stage: Stage, action: Callable[[], None]) -> None:
        step = self.step(stage)
        if step.outcome == "silent":
            logger.debug("simulated_remote_silent", stage=stage.value)
            return
        delay_s = step.delay_ms * self._time_scale / 1000.0
        self._pending = [d for d in self._pending if d.pending]
        self._pending.append(self._clock.after(delay_s, action))

    def shutdown(self) -> None:
        self.logged_off = True
        for deadline in self._pending:
            deadline.cancel()
        self._pending.clear()

    @property
    def profile(self) -> dict[str, Any]:
        return dict(self._profile)


class SimulatedAuthClient(AuthenticationClient):
    def __init__(self, remote: SimulatedRemote) -> None:
        self._remote = remote

    def login(
        self,
        credentials: Credentials,
        on_success: Callable[[Identity], None],
        on_failure: Callable[[FailureCause], None],
    ) -> None:
        step = self._remote.step(Stage.AUTHENTICATE)
        if step.outcome == "fail":
            code = step.result_code if step.result_code is not None else _INVALID_PASSWORD
            cause = cause_from_result_code(code, detail=step.reason)
            self._remote.schedule(Stage.AUTHENTICATE, lambda: on_failure(cause))
        else:
            identity = Identity(account_id="76561198000000000", display_name=credentials.username)
            self._remote.schedule(Stage.AUTHENTICATE, lambda: on_success(identity))

    def logoff(self) -> None:
        self._remote.shutdown()


class SimulatedSessionClient(SessionClient):
    def __init__(self, remote: SimulatedRemote) -> None:
        self._remote = remote

    def attach(
        self,
        on_connected: Callable[[], None],
        on_disconnected: Callable[[str], None],
    ) -> None:
        self._remote.on_session_connected = on_connected
        self._remote.on_session_disconnected = on_disconnected

    def open(self) -> None:
        remote = self._remote
        step = remote.step(Stage.ESTABLISH_SESSION)
        if step.outcome == "fail":
            reason = step.reason or "NoConnection"
            remote.schedule(Stage.ESTABLISH_SESSION, lambda: remote.on_session_disconnected(reason))
        else:
            remote.schedule(Stage.ESTABLISH_SESSION, self._connected)

    def _connected(self) -> None:
        remote = self._remote
        remote.on_session_connected()
        # The coordinator starts its handshake by itself once the game is running
        step = remote.step(Stage.HANDSHAKE_SUBSYSTEM)
        if step.outcome == "fail":
            reason = step.reason or "GC_GOING_DOWN"
            remote.schedule(
                Stage.HANDSHAKE_SUBSYSTEM, lambda: remote.on_subsystem_disconnected(reason)
            )
        else:
            remote.schedule(Stage.HANDSHAKE_SUBSYSTEM, remote.on_subsystem_connected)


class SimulatedSubsystemClient(SubsystemClient):
    def __init__(self, remote: SimulatedRemote) -> None:
        self._remote = remote

    def attach(
        self,
        on_connected: Callable[[], None],
        on_disconnected: Callable[[str], None],
    ) -> None:
        self._remote.on_subsystem_connected = on_connected
        self._remote.on_subsystem_disconnected = on_disconnected


class SimulatedDataPlaneClient(DataPlaneClient):
    def __init__(self, remote: SimulatedRemote) -> None:
        self._remote = remote

    def request(self, target_id: str, on_result: Callable[[Payload], None]) -> None:
        remote = self._remote
        remote.requests.append(target_id)
        step = remote.step(Stage.DATA_PLANE_REQUEST)
        if step.outcome == "fail":
            reason = step.reason or "GC_GOING_DOWN"
            remote.schedule(
                Stage.DATA_PLANE_REQUEST, lambda: remote.on_subsystem_disconnected(reason)
            )
        elif step.outcome == "empty":
            remote.schedule(Stage.DATA_PLANE_REQUEST, lambda: on_result(None))
        else:
            profile = remote.profile
            remote.schedule(Stage.DATA_PLANE_REQUEST, lambda: on_result(profile))


def build_simulated_clients(
    clock: Clock,
    scenario: Mapping[Stage, ScenarioStep] | None = None,
    profile: Mapping[str, Any] | None = None,
    time_scale: float = 1.0,
) -> tuple[RemoteClients, SimulatedRemote]:
    remote = SimulatedRemote(clock, scenario=scenario, profile=profile, time_scale=time_scale)
    clients = RemoteClients(
        auth=SimulatedAuthClient(remote),
        session=SimulatedSessionClient(remote),
        subsystem=SimulatedSubsystemClient(remote),
        data_plane=SimulatedDataPlaneClient(remote),
    )
    return clients, remote
