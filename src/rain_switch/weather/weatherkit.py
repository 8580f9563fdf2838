"""Apple WeatherKit REST provider implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..exceptions import WeatherProviderError
from ..models import ResolvedLocation
from .base import HttpWeatherProvider
from .models import ForecastSlice, Nowcast
from .normalize import (
    as_finite_float,
    minutes_between,
    normalize_probability,
    parse_datetime,
    precip_type_from_conditions,
)

WEATHERKIT_BASE_URL = "https://weatherkit.apple.com/api/v1/weather/en"
DATASETS = "currentWeather,forecastHourly,forecastNextHour"
TOKEN_LIFETIME = timedelta(minutes=30)
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)
DEFAULT_SERVICE_ID = "rain-switch"


def load_ec_private_key(pem_text: str) -> ec.EllipticCurvePrivateKey:
    """Parse a PKCS#8 PEM EC key (the ``.p8`` file Apple issues)."""
    try:
        key = serialization.load_pem_private_key(pem_text.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise WeatherProviderError(f"Failed to load WeatherKit private key: {exc}") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise WeatherProviderError(
            f"Expected EC private key for WeatherKit, got {type(key).__name__}."
        )
    return key


class WeatherKitProvider(HttpWeatherProvider):
    """Signs an ES256 developer token and reads current, next-hour and hourly datasets."""

    name = "Apple WeatherKit"

    def __init__(
        self,
        logger: logging.Logger,
        location: ResolvedLocation | None,
        *,
        team_id: str | None,
        key_id: str | None,
        private_key_path: Path | None,
        service_id: str | None = None,
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
        self.team_id = team_id
        self.key_id = key_id
        self.private_key_path = private_key_path
        self.service_id = service_id or DEFAULT_SERVICE_ID
        self._private_key: ec.EllipticCurvePrivateKey | None = None
        self._token: tuple[str, datetime] | None = None

    def is_supported(self) -> bool:
        return bool(
            self.team_id and self.key_id and self.private_key_path and self.location is not None
        )

    def get_nowcast(self) -> Nowcast:
        payload = self._fetch_payload()
        current = payload.get("currentWeather")
        if not isinstance(current, dict):
            raise WeatherProviderError("WeatherKit payload missing 'currentWeather' object.")
        minutes = self._records(payload.get("forecastNextHour"), "minutes")
        first_minute = minutes[0] if minutes else {}

        chance = as_finite_float(current.get("precipitationChance"))
        if chance is None:
            chance = as_finite_float(first_minute.get("precipitationChance"))
        type_text = (
            current.get("precipitationType")
            or first_minute.get("precipitationType")
            or current.get("conditionCode")
        )
        intensity = as_finite_float(current.get("precipitationIntensity"))
        return Nowcast(
            timestamp=self.now(),
            provider_name=self.name,
            precip_mm_hr=max(0.0, intensity) if intensity is not None else 0.0,
            pop=normalize_probability(chance) if chance is not None else None,
            precip_type=precip_type_from_conditions([type_text]),
            temperature_c=as_finite_float(current.get("temperature")),
        )

    def get_forecast(self, lookahead_minutes: int) -> list[ForecastSlice]:
        payload = self._fetch_payload()
        now = self.now()
        entries = [
            (minute, "startTime")
            for minute in self._records(payload.get("forecastNextHour"), "minutes")
        ] + [
            (hour, "forecastStart")
            for hour in self._records(payload.get("forecastHourly"), "hours")
        ]

        slices: list[ForecastSlice] = []
        for entry, time_key in entries:
            start = parse_datetime(entry.get(time_key))
            if start is None:
                continue
            minutes_from_now = minutes_between(now, start)
            if minutes_from_now < 0 or minutes_from_now > lookahead_minutes:
                continue
            intensity = as_finite_float(entry.get("precipitationIntensity"))
            chance = as_finite_float(entry.get("precipitationChance"))
            slices.append(
                ForecastSlice(
                    timestamp=start,
                    minutes_from_now=minutes_from_now,
                    provider_name=self.name,
                    precip_mm_hr=max(0.0, intensity) if intensity is not None else 0.0,
                    pop=normalize_probability(chance) if chance is not None else None,
                    precip_type=precip_type_from_conditions([entry.get("precipitationType")]),
                )
            )
        return sorted(slices, key=lambda item: item.timestamp)

    def _fetch_fresh_payload(self) -> dict[str, Any]:
        location = self._require_location()
        token = self._developer_token()
        url = f"{WEATHERKIT_BASE_URL}/{location.latitude}/{location.longitude}"
        return self._request_json(
            url,
            context="weather fetch",
            params={"dataSets": DATASETS},
            headers={"Authorization": f"Bearer {token}"},
        )

    def _developer_token(self) -> str:
        now = self.now()
        if self._token is not None and self._token[1] - TOKEN_REFRESH_MARGIN > now:
            return self._token[0]
        if not (self.team_id and self.key_id and self.private_key_path):
            raise WeatherProviderError("WeatherKit credentials incomplete.")
        key = self._load_private_key()
        expires_at = now + TOKEN_LIFETIME
        token = jwt.encode(
            {
                "iss": self.team_id,
                "sub": self.service_id,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            key,
            algorithm="ES256",
            headers={"kid": self.key_id, "id": f"{self.team_id}.{self.service_id}"},
        )
        self._token = (token, expires_at)
        return token

    def _load_private_key(self) -> ec.EllipticCurvePrivateKey:
        if self._private_key is None:
            if self.private_key_path is None:
                raise WeatherProviderError("WeatherKit private key path not configured.")
            try:
                pem_text = Path(self.private_key_path).read_text(encoding="utf-8")
            except OSError as exc:
                raise WeatherProviderError(
                    f"Failed reading WeatherKit private key {self.private_key_path}: {exc}"
                ) from exc
            self._private_key = load_ec_private_key(pem_text)
        return self._private_key

    @staticmethod
    def _records(container: Any, key: str) -> list[dict[str, Any]]:
        if not isinstance(container, dict):
            return []
        items = container.get(key)
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]
