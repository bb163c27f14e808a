"""
GCProbe: Probe Service

Wires one DiagnosticStateMachine to the process: builds credentials,
prints the startup banner, routes SIGINT/SIGTERM into the machine, waits
for the single finalization, logs off and hands back the exit code.

Interface:
  build_credentials()  config → Credentials (generates the login code)
  ProbeService.run()   one complete probe run → exit code
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TYPE_CHECKING, TextIO

import structlog

from gcprobe.clients.base import Credentials
from gcprobe.clients.factory import create_remote_clients
from gcprobe.clients.totp import generate_auth_code
from gcprobe.diagnostics.clock import Clock, LoopClock
from gcprobe.diagnostics.machine import DiagnosticStateMachine
from gcprobe.diagnostics.report import ReportEmitter
from gcprobe.diagnostics.types import InterruptKind
from gcprobe.primitives.common import new_id

if TYPE_CHECKING:
    from gcprobe.clients.base import RemoteClients
    from gcprobe.config import GCProbeConfig

logger = structlog.get_logger()

_SIGNALS: dict[signal.Signals, InterruptKind] = {
    signal.SIGINT: InterruptKind.SIGINT,
    signal.SIGTERM: InterruptKind.SIGTERM,
}


def build_credentials(config: GCProbeConfig, timestamp: float | None = None) -> Credentials:
    """
    Generate the login code and bundle it with the account credentials.

    Raises TotpError when the shared secret cannot be decoded.
    """
    account = config.account
    auth_code = generate_auth_code(account.shared_secret, timestamp=timestamp)
    logger.info("auth_code_generated")
    return Credentials(
        username=account.username,
        password=account.password,
        auth_code=auth_code,
    )


class ProbeService:
    """
    Runs one probe. Not reusable: build a new service per run.

    ``clients`` and ``clock`` default to the configured backend and the
    running event loop; tests inject their own.
    """

    def __init__(
        self,
        config: GCProbeConfig,
        credentials: Credentials,
        clients: RemoteClients | None = None,
        clock: Clock | None = None,
        stream: TextIO | None = None,
        install_signal_handlers: bool = True,
        run_id: str | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._clients = clients
        self._clock = clock
        self._stream = stream
        self._install_signal_handlers = install_signal_handlers
        self._run_id = run_id or new_id()
        self._machine: DiagnosticStateMachine | None = None
        self._logger = logger.bind(system="probe_service", run_id=self._run_id)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def machine(self) -> DiagnosticStateMachine | None:
        return self._machine

    async def run(self) -> int:
        if self._machine is not None:
            raise RuntimeError("ProbeService.run() called twice")

        loop = asyncio.get_running_loop()
        clock = self._clock or LoopClock(loop)
        clients = self._clients or create_remote_clients(self._config, clock)
        reporter = ReportEmitter(stream=self._stream, fmt=self._config.report.format)

        done: asyncio.Future[int] = loop.create_future()

        def _complete(exit_code: int) -> None:
            if not done.done():
                done.set_result(exit_code)

        machine = DiagnosticStateMachine(
            clients=clients,
            clock=clock,
            reporter=reporter,
            deadlines=self._config.timeouts.deadline_specs(),
            global_timeout_s=self._config.timeouts.global_s,
            target_id=self._config.account.target_id,
            credentials=self._credentials,
            # Callbacks may come from a collaborator's own thread
            on_complete=lambda code: loop.call_soon_threadsafe(_complete, code),
            run_id=self._run_id,
        )
        self._machine = machine

        self._write_banner()
        installed = self._add_signal_handlers(loop, machine) if self._install_signal_handlers else []
        try:
            machine.start()
            exit_code = await done
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)

        self._logoff(clients)
        grace_s = self._config.shutdown_grace_ms / 1000.0
        if grace_s > 0:
            await asyncio.sleep(grace_s)
        return exit_code

    def _add_signal_handlers(
        self,
        loop: asyncio.AbstractEventLoop,
        machine: DiagnosticStateMachine,
    ) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        for signum, kind in _SIGNALS.items():
            try:
                loop.add_signal_handler(signum, machine.interrupt, kind)
            except (NotImplementedError, RuntimeError) as exc:
                # Not on the main thread, or a platform without loop signal support
                self._logger.warning("signal_handler_unavailable", signal=kind.value, error=str(exc))
                continue
            installed.append(signum)
        return installed

    def _logoff(self, clients: RemoteClients) -> None:
        try:
            clients.close()
        except Exception as exc:
            self._logger.warning("logoff_failed", error=str(exc))
            self._write(f"[WARN] Logout error: {exc}")
            return
        self._logger.info("logged_off")
        self._write("[*] Logged off")

    def _write_banner(self) -> None:
        account = self._config.account
        self._write(
            "\n".join([
                "[*] GC probe starting...",
                "[*] Parameters:",
                f"   - Account: {account.username}",
                f"   - Target ID: {account.target_id}",
                f"   - Environment: {self._config.environment}",
                "",
            ])
        )

    def _write(self, text: str) -> None:
        if self._config.report.format == "json":
            return
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(text + "\n")
        stream.flush()
