"""Provider-agnostic weather interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from ..exceptions import ProviderTimeoutError, WeatherProviderError
from ..models import ResolvedLocation
from ..redaction import sanitize_text
from .models import ForecastSlice, Nowcast

RAW_RESPONSE_TTL = timedelta(seconds=60)


class WeatherProvider(ABC):
    """Capability contract every upstream adapter satisfies."""

    name: str

    @abstractmethod
    def is_supported(self) -> bool:
        """Return whether credentials and a location are available."""

    @abstractmethod
    def get_nowcast(self) -> Nowcast:
        """Return the current-conditions reading."""

    @abstractmethod
    def get_forecast(self, lookahead_minutes: int) -> list[ForecastSlice]:
        """Return slices within ``[0, lookahead_minutes]`` sorted by timestamp."""

    def close(self) -> None:
        """Release provider resources."""


class HttpWeatherProvider(WeatherProvider):
    """Shared HTTP plumbing: JSON GETs and a short-lived raw response memo."""

    accept_header = "application/json"

    def __init__(
        self,
        logger: logging.Logger,
        location: ResolvedLocation | None,
        *,
        timeout_seconds: float,
        user_agent: str,
        clock: Callable[[], datetime] | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.logger = logger
        self.location = location
        self._clock = clock or (lambda: datetime.now(UTC))
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=timeout_seconds,
            headers={"Accept": self.accept_header, "User-Agent": user_agent},
        )
        self._raw_cache: tuple[datetime, dict[str, Any]] | None = None

    def __enter__(self) -> HttpWeatherProvider:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def now(self) -> datetime:
        return self._clock()

    def _fetch_payload(self) -> dict[str, Any]:
        """Return the memoized upstream payload, refreshing it when older than 60s."""
        now = self.now()
        if self._raw_cache is not None and now - self._raw_cache[0] < RAW_RESPONSE_TTL:
            return self._raw_cache[1]
        payload = self._fetch_fresh_payload()
        self._raw_cache = (self.now(), payload)
        return payload

    @abstractmethod
    def _fetch_fresh_payload(self) -> dict[str, Any]:
        """Issue the upstream request(s) for this provider."""

    def _require_location(self) -> ResolvedLocation:
        if self.location is None:
            raise WeatherProviderError(f"{self.name}: no location available.")
        return self.location

    def _request_json(
        self,
        url: str,
        context: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._client.get(url, params=params, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.name} {context} timed out.") from exc
        except httpx.HTTPStatusError as exc:
            raise WeatherProviderError(
                f"{self.name} {context} failed with status {exc.response.status_code}: "
                f"{sanitize_text(exc.response.text[:300])}"
            ) from exc
        except httpx.HTTPError as exc:
            raise WeatherProviderError(
                f"{self.name} {context} request failed: {sanitize_text(str(exc))}"
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise WeatherProviderError(f"{self.name} {context} returned non-JSON response.") from exc

        if not isinstance(payload, dict):
            raise WeatherProviderError(
                f"{self.name} {context} returned unexpected payload type "
                f"{type(payload).__name__}."
            )
        return payload
