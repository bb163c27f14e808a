"""
GCProbe: Shared Primitives
"""

from gcprobe.primitives.common import GCProbeBaseModel, new_id

__all__ = ["GCProbeBaseModel", "new_id"]
