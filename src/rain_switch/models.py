"""Typed models shared by the location resolver and output engines."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

LocationSource = Literal["config", "geocode", "ip"]
OutputKind = Literal["rain-now", "rain-soon", "snow-mode"]


class ResolvedLocation(BaseModel):
    """Coordinate plus the resolution stage that produced it."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    source: str

    @field_validator("latitude", "longitude")
    @classmethod
    def require_finite(cls, value: float) -> float:
        """Reject NaN/inf so an unresolved location never looks resolved."""
        if not math.isfinite(value):
            raise ValueError("coordinate must be finite")
        return value


class OutputMetadata(BaseModel):
    """Diagnostic values published alongside each output."""

    last_update: datetime | None = None
    provider_name: str = ""
    precip_mm_hr: float = 0.0
    probability: float = 0.0


class OutputState(BaseModel):
    """Consumer-facing snapshot of one monitored output."""

    name: str
    kind: OutputKind
    is_on: bool
    faulted: bool
    override_until: datetime | None = None
    metadata: OutputMetadata = Field(default_factory=OutputMetadata)
