"""
GCProbe: Remote Collaborator Interfaces

The probe never speaks the remote protocols itself. It drives four
collaborators through these interfaces and listens for their callbacks:

  AuthenticationClient  login(credentials) -> success(identity) | failure(cause)
  SessionClient         connected | disconnected(reason), brought up by open()
  SubsystemClient       connected | disconnected(reason), passive
  DataPlaneClient       request(target_id) -> payload | empty

Callbacks may arrive from any thread or loop callback; the state machine
serialises them through its CompletionGate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from gcprobe.diagnostics.types import CauseCode, FailureCause

Payload = Mapping[str, Any] | None


@dataclass(frozen=True)
class Credentials:
    """What login needs. ``auth_code`` is the one-time code generated at startup."""

    username: str
    password: str
    auth_code: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=***, auth_code=***)"


@dataclass(frozen=True)
class Identity:
    """Who we logged in as, as reported by the remote."""

    account_id: str
    display_name: str = ""


# Steam EResult values that login failures map onto
_RESULT_CODE_CAUSES: dict[int, CauseCode] = {
    5: CauseCode.INVALID_CREDENTIAL,  # InvalidPassword
    84: CauseCode.RATE_LIMITED,  # RateLimitExceeded
    85: CauseCode.TWO_FACTOR_REQUIRED,  # AccountLoginDeniedNeedTwoFactor
    88: CauseCode.TWO_FACTOR_MISMATCH,  # TwoFactorCodeMismatch
}


def cause_from_result_code(result_code: int, detail: str = "") -> FailureCause:
    """Translate a numeric login result code into a tagged FailureCause."""
    return FailureCause(
        code=_RESULT_CODE_CAUSES.get(result_code, CauseCode.UNKNOWN),
        detail=detail,
        raw_code=str(result_code),
    )


class AuthenticationClient(ABC):
    @abstractmethod
    def login(
        self,
        credentials: Credentials,
        on_success: Callable[[Identity], None],
        on_failure: Callable[[FailureCause], None],
    ) -> None:
        """Start a login. Exactly one of the callbacks is expected, eventually."""
        ...

    @abstractmethod
    def logoff(self) -> None: ...


class SessionClient(ABC):
    @abstractmethod
    def attach(
        self,
        on_connected: Callable[[], None],
        on_disconnected: Callable[[str], None],
    ) -> None:
        """Register connectivity listeners. Disconnects may arrive at any time."""
        ...

    @abstractmethod
    def open(self) -> None:
        """Ask the remote to bring the session up (presence online, game launched)."""
        ...


class SubsystemClient(ABC):
    @abstractmethod
    def attach(
        self,
        on_connected: Callable[[], None],
        on_disconnected: Callable[[str], None],
    ) -> None:
        """Register handshake listeners. The handshake itself is driven by the remote."""
        ...


class DataPlaneClient(ABC):
    @abstractmethod
    def request(self, target_id: str, on_result: Callable[[Payload], None]) -> None:
        """Issue one query. ``on_result`` receives the payload, or None/empty for no data."""
        ...


@dataclass
class RemoteClients:
    """The four collaborators a probe run needs."""

    auth: AuthenticationClient
    session: SessionClient
    subsystem: SubsystemClient
    data_plane: DataPlaneClient

    def close(self) -> None:
        self.auth.logoff()
