"""
GCProbe: Remote Clients

Interfaces for the login, session, game coordinator and profile
collaborators, the simulated backend, and Steam Guard code generation.
"""

from gcprobe.clients.base import (
    AuthenticationClient,
    Credentials,
    DataPlaneClient,
    Identity,
    RemoteClients,
    SessionClient,
    SubsystemClient,
    cause_from_result_code,
)
from gcprobe.clients.totp import TotpError, generate_auth_code

__all__ = [
    "AuthenticationClient",
    "Credentials",
    "DataPlaneClient",
    "Identity",
    "RemoteClients",
    "SessionClient",
    "SubsystemClient",
    "TotpError",
    "cause_from_result_code",
    "generate_auth_code",
]
