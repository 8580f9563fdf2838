"""Unit, probability and condition-vocabulary normalization shared by providers."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from .models import PrecipType

_SNOW_WORDS = ("snow", "flurr", "blizzard")
_SLEET_WORDS = ("sleet", "mix", "ice pellets", "ice_pellets")
_RAIN_WORDS = ("rain", "drizzle", "shower", "thunder")

# Below this rate a provider without an explicit condition code reports "none".
RAIN_INFERENCE_THRESHOLD_MM_HR = 0.05


def as_finite_float(value: Any) -> float | None:
    """Return ``value`` as float when it is a finite number (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def clamp_percentage(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(100.0, value))


def probability_from_fraction(value: float) -> float:
    """Scale a 0..1 fraction to 0..100."""
    if not math.isfinite(value):
        return 0.0
    return clamp_percentage(min(1.0, max(0.0, value)) * 100.0)


def normalize_probability(value: float) -> float:
    """Normalize a probability of unknown convention to 0..100.

    Values above 1 are assumed to already be percentages.
    """
    if value > 1:
        return clamp_percentage(value)
    return probability_from_fraction(value)


def rate_from_accumulation(amount_mm: float | None, duration_minutes: float) -> float:
    """Convert an accumulation over ``duration_minutes`` into mm/h."""
    if amount_mm is None or not math.isfinite(amount_mm):
        return 0.0
    hours = max(1 / 60, duration_minutes / 60)
    return max(0.0, amount_mm / hours)


def rate_from_per_minute(amount_mm: float | None) -> float:
    if amount_mm is None or not math.isfinite(amount_mm):
        return 0.0
    return max(0.0, amount_mm * 60)


def precip_type_from_conditions(conditions: Iterable[str | None]) -> PrecipType:
    """Map free-text condition descriptions to the four-value enum.

    Matching is case-insensitive on substrings; snow wins over sleet, sleet over rain.
    """
    texts = [text.lower() for text in conditions if isinstance(text, str) and text]
    if any(word in text for text in texts for word in _SNOW_WORDS):
        return "snow"
    if any(word in text for text in texts for word in _SLEET_WORDS):
        return "sleet"
    if any(word in text for text in texts for word in _RAIN_WORDS):
        return "rain"
    return "none"


def infer_type_from_rate(precip_mm_hr: float) -> PrecipType:
    return "rain" if precip_mm_hr > RAIN_INFERENCE_THRESHOLD_MM_HR else "none"


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, rounded to nearest with halves going up."""
    return math.floor((end - start).total_seconds() / 60 + 0.5)


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings (``Z`` suffix allowed) or epoch seconds into UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
        return parsed.astimezone(UTC) if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None
