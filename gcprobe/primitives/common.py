"""
GCProbe: Common Primitives

Base model and small utilities shared by every package.
"""

from __future__ import annotations

from pydantic import BaseModel
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


class GCProbeBaseModel(BaseModel):
    """Base model for all GCProbe value types."""

    model_config = {"populate_by_name": True, "from_attributes": True}
