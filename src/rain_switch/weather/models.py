"""Typed models for normalized precipitation readings."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PrecipType = Literal["rain", "snow", "sleet", "none"]


class Nowcast(BaseModel):
    """Single current-conditions reading produced by one provider call."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    provider_name: str
    precip_mm_hr: float = Field(ge=0)
    pop: float | None = Field(default=None, ge=0, le=100)
    precip_type: PrecipType = "none"
    temperature_c: float | None = None


class ForecastSlice(BaseModel):
    """Predicted conditions for one future time point."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    minutes_from_now: int
    provider_name: str
    precip_mm_hr: float = Field(ge=0)
    pop: float | None = Field(default=None, ge=0, le=100)
    precip_type: PrecipType = "none"
