"""
GCProbe: Telemetry

Structured logging for every run.
"""

from gcprobe.telemetry.logging import setup_logging

__all__ = ["setup_logging"]
