"""NWS (api.weather.gov) gridpoint provider implementation."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx

from ..exceptions import WeatherProviderError
from ..models import ResolvedLocation
from .base import HttpWeatherProvider
from .models import ForecastSlice, Nowcast, PrecipType
from .normalize import (
    as_finite_float,
    clamp_percentage,
    infer_type_from_rate,
    minutes_between,
    parse_datetime,
    precip_type_from_conditions,
    rate_from_accumulation,
)

NWS_BASE_URL = "https://api.weather.gov"
DEFAULT_PERIOD_MINUTES = 60

_DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?)?$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class GridPoint:
    office: str
    grid_x: int
    grid_y: int


@dataclass(frozen=True, slots=True)
class SeriesEntry:
    start: datetime
    end: datetime
    duration_minutes: int
    value: float | None = None
    precip_type: PrecipType | None = None

    def covers(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass(slots=True)
class _SliceBuilder:
    precip_mm_hr: float | None = None
    pop: float | None = None
    precip_type: PrecipType | None = None


def parse_duration_minutes(value: str) -> int:
    """Parse an ISO-8601 duration such as ``PT1H`` or ``P1DT6H``; defaults to one hour."""
    match = _DURATION_RE.match(value.strip())
    if not match:
        return DEFAULT_PERIOD_MINUTES
    days, hours, minutes = (int(part) if part else 0 for part in match.groups())
    total = days * 24 * 60 + hours * 60 + minutes
    return total if total > 0 else DEFAULT_PERIOD_MINUTES


def parse_valid_time(value: Any) -> tuple[datetime, datetime, int] | None:
    """Split an NWS ``validTime`` (``<start>/<duration>``) into start, end, minutes."""
    if not isinstance(value, str) or "/" not in value:
        return None
    start_part, duration_part = value.split("/", 1)
    start = parse_datetime(start_part)
    if start is None or not duration_part:
        return None
    duration = parse_duration_minutes(duration_part)
    try:
        end = start + timedelta(minutes=duration)
    except OverflowError:
        return None
    return start, end, duration


class NWSWeatherProvider(HttpWeatherProvider):
    """Reads quantitative precipitation, PoP and weather series from NWS gridpoints."""

    name = "NOAA/NWS"
    accept_header = "application/geo+json"

    def __init__(
        self,
        logger: logging.Logger,
        location: ResolvedLocation | None,
        *,
        enabled: bool = True,
        timeout_seconds: float = 5.0,
        user_agent: str = "rain-switch/0.1",
        clock: Callable[[], datetime] | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(
            logger,
            location,
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
            clock=clock,
            http_client=http_client,
        )
        self.enabled = enabled
        self._grid_point: GridPoint | None = None

    def is_supported(self) -> bool:
        return self.enabled and self.location is not None

    def get_nowcast(self) -> Nowcast:
        properties = self._grid_properties()
        now = self.now()
        precip = self._select(self._series(properties, "quantitativePrecipitation"), now)
        pop = self._select(self._series(properties, "probabilityOfPrecipitation"), now)
        weather = self._select(self._weather_series(properties), now)

        precip_mm_hr = (
            rate_from_accumulation(precip.value, precip.duration_minutes) if precip else 0.0
        )
        pop_value = clamp_percentage(pop.value) if pop and pop.value is not None else None
        precip_type = (
            weather.precip_type
            if weather and weather.precip_type
            else infer_type_from_rate(precip_mm_hr)
        )
        return Nowcast(
            timestamp=now,
            provider_name=self.name,
            precip_mm_hr=precip_mm_hr,
            pop=pop_value,
            precip_type=precip_type,
        )

    def get_forecast(self, lookahead_minutes: int) -> list[ForecastSlice]:
        properties = self._grid_properties()
        now = self.now()
        combined: dict[datetime, _SliceBuilder] = {}

        for entry in self._series(properties, "quantitativePrecipitation"):
            builder = combined.setdefault(entry.start, _SliceBuilder())
            builder.precip_mm_hr = rate_from_accumulation(entry.value, entry.duration_minutes)
        for entry in self._series(properties, "probabilityOfPrecipitation"):
            builder = combined.setdefault(entry.start, _SliceBuilder())
            if entry.value is not None:
                builder.pop = clamp_percentage(entry.value)
        for entry in self._weather_series(properties):
            combined.setdefault(entry.start, _SliceBuilder()).precip_type = entry.precip_type

        slices: list[ForecastSlice] = []
        for start, builder in combined.items():
            minutes_from_now = minutes_between(now, start)
            if minutes_from_now < 0 or minutes_from_now > lookahead_minutes:
                continue
            precip_mm_hr = builder.precip_mm_hr or 0.0
            slices.append(
                ForecastSlice(
                    timestamp=start,
                    minutes_from_now=minutes_from_now,
                    provider_name=self.name,
                    precip_mm_hr=precip_mm_hr,
                    pop=builder.pop,
                    precip_type=builder.precip_type or infer_type_from_rate(precip_mm_hr),
                )
            )
        return sorted(slices, key=lambda item: item.timestamp)

    def _grid_properties(self) -> dict[str, Any]:
        payload = self._fetch_payload()
        properties = payload.get("properties")
        if not isinstance(properties, dict):
            raise WeatherProviderError("NWS gridpoint payload missing 'properties' object.")
        return properties

    def _fetch_fresh_payload(self) -> dict[str, Any]:
        if self._grid_point is None:
            self._grid_point = self._resolve_grid_point()
        grid = self._grid_point
        url = f"{NWS_BASE_URL}/gridpoints/{grid.office}/{grid.grid_x},{grid.grid_y}"
        return self._request_json(url, context="gridpoint fetch")

    def _resolve_grid_point(self) -> GridPoint:
        location = self._require_location()
        url = f"{NWS_BASE_URL}/points/{location.latitude:.4f},{location.longitude:.4f}"
        payload = self._request_json(url, context="points lookup")
        properties = payload.get("properties")
        if not isinstance(properties, dict):
            raise WeatherProviderError("NWS points payload missing 'properties' object.")
        office = properties.get("gridId")
        grid_x = properties.get("gridX")
        grid_y = properties.get("gridY")
        if not isinstance(office, str) or not isinstance(grid_x, int) or not isinstance(grid_y, int):
            raise WeatherProviderError("NWS points response missing grid data.")
        self.logger.info("Resolved NWS grid point %s %d,%d", office, grid_x, grid_y)
        return GridPoint(office=office, grid_x=grid_x, grid_y=grid_y)

    @staticmethod
    def _raw_values(properties: dict[str, Any], key: str) -> list[Any]:
        layer = properties.get(key)
        if not isinstance(layer, dict):
            return []
        values = layer.get("values")
        return values if isinstance(values, list) else []

    def _series(self, properties: dict[str, Any], key: str) -> list[SeriesEntry]:
        entries: list[SeriesEntry] = []
        for item in self._raw_values(properties, key):
            if not isinstance(item, dict):
                continue
            parsed = parse_valid_time(item.get("validTime"))
            if parsed is None:
                continue
            start, end, duration = parsed
            entries.append(
                SeriesEntry(
                    start=start,
                    end=end,
                    duration_minutes=duration,
                    value=as_finite_float(item.get("value")),
                )
            )
        return entries

    def _weather_series(self, properties: dict[str, Any]) -> list[SeriesEntry]:
        entries: list[SeriesEntry] = []
        for item in self._raw_values(properties, "weather"):
            if not isinstance(item, dict):
                continue
            parsed = parse_valid_time(item.get("validTime"))
            if parsed is None:
                continue
            start, end, duration = parsed
            conditions = item.get("value")
            texts: list[str | None] = []
            if isinstance(conditions, list):
                for condition in conditions:
                    if isinstance(condition, dict):
                        texts.append(condition.get("weather") or condition.get("coverage"))
            entries.append(
                SeriesEntry(
                    start=start,
                    end=end,
                    duration_minutes=duration,
                    precip_type=precip_type_from_conditions(texts),
                )
            )
        return entries

    @staticmethod
    def _select(entries: list[SeriesEntry], moment: datetime) -> SeriesEntry | None:
        return next((entry for entry in entries if entry.covers(moment)), None)
