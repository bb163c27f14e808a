"""
GCProbe: Remote Backend Factory

Builds the RemoteClients bundle the probe runs against.

  simulated  the in-process SimulatedRemote, driven by ``backend.scenario``
  import     ``backend.factory`` names a ``module:callable`` that takes
             ``(config, clock)`` and returns a RemoteClients
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

import structlog

from gcprobe.clients.base import RemoteClients
from gcprobe.clients.simulated import build_simulated_clients

if TYPE_CHECKING:
    from gcprobe.config import GCProbeConfig
    from gcprobe.diagnostics.clock import Clock

logger = structlog.get_logger()


def create_remote_clients(config: GCProbeConfig, clock: Clock) -> RemoteClients:
    """Factory to create the configured remote backend."""
    backend = config.backend
    if backend.provider == "simulated":
        clients, _ = build_simulated_clients(
            clock,
            scenario=backend.scenario,
            profile=backend.profile,
            time_scale=backend.time_scale,
        )
        logger.info("remote_backend_created", provider="simulated", time_scale=backend.time_scale)
        return clients
    elif backend.provider == "import":
        module_name, _, attr = backend.factory.partition(":")
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
        clients = factory(config, clock)
        if not isinstance(clients, RemoteClients):
            raise TypeError(
                f"{backend.factory} returned {type(clients).__name__}, expected RemoteClients"
            )
        logger.info("remote_backend_created", provider="import", factory=backend.factory)
        return clients
    else:
        raise ValueError(f"Unknown remote backend provider: {backend.provider}")
