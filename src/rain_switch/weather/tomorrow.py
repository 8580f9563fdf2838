"""Tomorrow.io v4 forecast provider implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from ..exceptions import WeatherProviderError
from ..models import ResolvedLocation
from .base import HttpWeatherProvider
from .models import ForecastSlice, Nowcast, PrecipType
from .normalize import as_finite_float, clamp_percentage, minutes_between, parse_datetime

FORECAST_URL = "https://api.tomorrow.io/v4/weather/forecast"

# Tomorrow.io precipitationType codes.
_TYPE_CODES: dict[int, PrecipType] = {1: "rain", 2: "snow", 3: "sleet", 4: "sleet"}


@dataclass(frozen=True, slots=True)
class Interval:
    timestamp: datetime
    precip_mm_hr: float
    pop: float | None
    precip_type: PrecipType


def map_precipitation_type(value: Any) -> PrecipType:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "none"
    return _TYPE_CODES.get(int(value), "none")


def collect_intervals(payload: dict[str, Any]) -> list[Interval]:
    """Flatten every timeline's intervals, sorted by start time."""
    timelines = payload.get("timelines")
    if isinstance(timelines, dict):
        # v4 /weather/forecast returns {"minutely": [...], "hourly": [...]}.
        timelines = [{"intervals": items} for items in timelines.values() if isinstance(items, list)]
    if not isinstance(timelines, list):
        raise WeatherProviderError("Tomorrow.io payload missing 'timelines'.")

    intervals: list[Interval] = []
    for timeline in timelines:
        if not isinstance(timeline, dict):
            continue
        raw_intervals = timeline.get("intervals")
        if not isinstance(raw_intervals, list):
            continue
        for raw in raw_intervals:
            if not isinstance(raw, dict):
                continue
            ts = parse_datetime(raw.get("startTime", raw.get("time")))
            if ts is None:
                continue
            values = raw.get("values")
            values = values if isinstance(values, dict) else {}
            intensity = as_finite_float(values.get("precipitationIntensity"))
            probability = as_finite_float(values.get("precipitationProbability"))
            intervals.append(
                Interval(
                    timestamp=ts,
                    precip_mm_hr=max(0.0, intensity) if intensity is not None else 0.0,
                    pop=clamp_percentage(probability) if probability is not None else None,
                    precip_type=map_precipitation_type(values.get("precipitationType")),
                )
            )
    return sorted(intervals, key=lambda item: item.timestamp)


class TomorrowProvider(HttpWeatherProvider):
    """Uses 1-minute and 1-hour timesteps for both nowcast and forecast."""

    name = "Tomorrow.io"

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
        now = self.now()
        intervals = collect_intervals(self._fetch_payload())
        upcoming = [item for item in intervals if item.timestamp >= now]
        best = upcoming[0] if upcoming else (intervals[-1] if intervals else None)
        if best is None:
            return Nowcast(timestamp=now, provider_name=self.name, precip_mm_hr=0.0)
        return Nowcast(
            timestamp=best.timestamp,
            provider_name=self.name,
            precip_mm_hr=best.precip_mm_hr,
            pop=best.pop,
            precip_type=best.precip_type,
        )

    def get_forecast(self, lookahead_minutes: int) -> list[ForecastSlice]:
        now = self.now()
        slices: list[ForecastSlice] = []
        for item in collect_intervals(self._fetch_payload()):
            minutes_from_now = minutes_between(now, item.timestamp)
            if minutes_from_now < 0 or minutes_from_now > lookahead_minutes:
                continue
            slices.append(
                ForecastSlice(
                    timestamp=item.timestamp,
                    minutes_from_now=minutes_from_now,
                    provider_name=self.name,
                    precip_mm_hr=item.precip_mm_hr,
                    pop=item.pop,
                    precip_type=item.precip_type,
                )
            )
        return slices

    def _fetch_fresh_payload(self) -> dict[str, Any]:
        location = self._require_location()
        if not self.api_key:
            raise WeatherProviderError("Tomorrow.io configuration incomplete.")
        self.logger.debug(
            "[Tomorrow.io] Requesting forecast for %.3f,%.3f",
            location.latitude,
            location.longitude,
        )
        return self._request_json(
            FORECAST_URL,
            context="forecast fetch",
            params={
                "location": f"{location.latitude},{location.longitude}",
                "timesteps": "1m,1h",
                "fields": "precipitationIntensity,precipitationProbability,precipitationType",
                "units": "metric",
                "apikey": self.api_key,
            },
        )
