"""OpenWeatherMap One Call provider implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from ..exceptions import WeatherProviderError
from ..models import ResolvedLocation
from .base import HttpWeatherProvider
from .models import ForecastSlice, Nowcast, PrecipType
from .normalize import (
    as_finite_float,
    minutes_between,
    parse_datetime,
    precip_type_from_conditions,
    probability_from_fraction,
    rate_from_accumulation,
    rate_from_per_minute,
)

ONECALL_URL = "https://api.openweathermap.org/data/2.5/onecall"
# Accumulations below this are treated as trace amounts when picking a type.
TRACE_MM = 0.01


def hourly_rate(bucket: Any) -> float | None:
    """Read a ``{"1h": mm}`` or ``{"3h": mm}`` accumulation bucket as mm/h."""
    if not isinstance(bucket, dict):
        return None
    one_hour = as_finite_float(bucket.get("1h", bucket.get("1H")))
    if one_hour is not None:
        return max(0.0, one_hour)
    three_hour = as_finite_float(bucket.get("3h"))
    if three_hour is not None:
        return rate_from_accumulation(three_hour, 180)
    return None


def resolve_type(weather: Any, rain: float | None, snow: float | None) -> PrecipType:
    if (snow or 0.0) > TRACE_MM:
        return "snow"
    if (rain or 0.0) > TRACE_MM:
        return "rain"
    texts: list[str | None] = []
    if isinstance(weather, list) and weather and isinstance(weather[0], dict):
        entry = weather[0]
        texts = [entry.get("main"), entry.get("description")]
    return precip_type_from_conditions(texts)


class OpenWeatherMapProvider(HttpWeatherProvider):
    """Nowcast from ``current``; forecast from ``minutely`` plus ``hourly``."""

    name = "OpenWeatherMap"

    def __init__(
        self,
        logger: logging.Logger,
        location: ResolvedLocation | None,
        *,
        api_key: str | None,
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
        self.api_key = api_key

    def is_supported(self) -> bool:
        return bool(self.api_key) and self.location is not None

    def get_nowcast(self) -> Nowcast:
        payload = self._fetch_payload()
        current = payload.get("current")
        if not isinstance(current, dict):
            raise WeatherProviderError("OpenWeatherMap payload missing 'current' object.")
        snow = hourly_rate(current.get("snow"))
        rain = hourly_rate(current.get("rain"))
        precip_mm_hr = snow if snow is not None else (rain if rain is not None else 0.0)
        return Nowcast(
            timestamp=parse_datetime(current.get("dt")) or self.now(),
            provider_name=self.name,
            precip_mm_hr=precip_mm_hr,
            pop=None,
            precip_type=resolve_type(current.get("weather"), rain, snow),
            temperature_c=as_finite_float(current.get("temp")),
        )

    def get_forecast(self, lookahead_minutes: int) -> list[ForecastSlice]:
        payload = self._fetch_payload()
        now = self.now()
        slices: list[ForecastSlice] = []

        for minute in self._records(payload, "minutely"):
            ts = parse_datetime(minute.get("dt"))
            if ts is None:
                continue
            minutes_from_now = minutes_between(now, ts)
            if minutes_from_now < 0 or minutes_from_now > lookahead_minutes:
                continue
            per_minute = as_finite_float(minute.get("precipitation")) or 0.0
            slices.append(
                ForecastSlice(
                    timestamp=ts,
                    minutes_from_now=minutes_from_now,
                    provider_name=self.name,
                    precip_mm_hr=rate_from_per_minute(per_minute),
                    pop=None,
                    precip_type="rain" if per_minute > 0 else "none",
                )
            )

        for hour in self._records(payload, "hourly"):
            ts = parse_datetime(hour.get("dt"))
            if ts is None:
                continue
            minutes_from_now = minutes_between(now, ts)
            if minutes_from_now < 0 or minutes_from_now > lookahead_minutes:
                continue
            rain = hourly_rate(hour.get("rain"))
            snow = hourly_rate(hour.get("snow"))
            pop = as_finite_float(hour.get("pop"))
            slices.append(
                ForecastSlice(
                    timestamp=ts,
                    minutes_from_now=minutes_from_now,
                    provider_name=self.name,
                    precip_mm_hr=rain if rain is not None else (snow if snow is not None else 0.0),
                    pop=probability_from_fraction(pop) if pop is not None else None,
                    precip_type=resolve_type(hour.get("weather"), rain, snow),
                )
            )

        return sorted(slices, key=lambda item: item.timestamp)

    def _fetch_fresh_payload(self) -> dict[str, Any]:
        location = self._require_location()
        if not self.api_key:
            raise WeatherProviderError("OpenWeatherMap configuration incomplete.")
        self.logger.debug(
            "[OpenWeatherMap] Requesting weather data for %.3f,%.3f",
            location.latitude,
            location.longitude,
        )
        return self._request_json(
            ONECALL_URL,
            context="onecall fetch",
            params={
                "lat": location.latitude,
                "lon": location.longitude,
                "appid": self.api_key,
                "units": "metric",
                "exclude": "daily,alerts",
            },
        )

    @staticmethod
    def _records(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
        items = payload.get(key)
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]
