"""Ordered provider fallback with a shared response cache and failure backoff."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Generic, TypeVar

from ..config import DEFAULT_RETRY_BACKOFF_SECONDS, Settings
from ..exceptions import (
    BackoffActiveError,
    ChainExhaustedError,
    ConfigError,
    ProviderTimeoutError,
    RainSwitchError,
)
from ..models import ResolvedLocation
from ..redaction import sanitize_text
from .base import WeatherProvider
from .models import ForecastSlice, Nowcast
from .nws import NWSWeatherProvider
from .openweathermap import OpenWeatherMapProvider
from .tomorrow import TomorrowProvider
from .weatherkit import WeatherKitProvider

T = TypeVar("T")

# Forecast lookaheads are bucketed so nearby requests share one cache slot.
LOOKAHEAD_BUCKET_MINUTES = 5


def normalize_lookahead(lookahead_minutes: float) -> int:
    """Round a lookahead up to the next 5-minute bucket, with a floor of 5."""
    buckets = math.ceil(lookahead_minutes / LOOKAHEAD_BUCKET_MINUTES)
    return max(LOOKAHEAD_BUCKET_MINUTES, buckets * LOOKAHEAD_BUCKET_MINUTES)


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    payload: T
    timestamp: datetime


@dataclass(slots=True)
class BackoffState:
    index: int = 0
    next_allowed_at: datetime | None = None


class ProviderChain:
    """Queries supported providers in priority order until one succeeds.

    Nowcast and forecast calls share one backoff clock: when every provider
    fails, further calls are refused without network access until the next
    step of the retry schedule has elapsed. Any success resets the schedule.
    """

    def __init__(
        self,
        providers: Sequence[WeatherProvider],
        logger: logging.Logger,
        *,
        timeout_seconds: float = 5.0,
        cache_ttl_seconds: float = 60,
        retry_backoff_seconds: Sequence[float] = DEFAULT_RETRY_BACKOFF_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.logger = logger
        self.providers = [provider for provider in providers if provider.is_supported()]
        if not self.providers:
            raise ConfigError("No weather providers enabled.")
        self.timeout_seconds = timeout_seconds
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.retry_backoff = [
            timedelta(seconds=value)
            for value in (retry_backoff_seconds or DEFAULT_RETRY_BACKOFF_SECONDS)
        ]
        self._clock = clock or (lambda: datetime.now(UTC))
        self._nowcast_cache: CacheEntry[Nowcast] | None = None
        self._forecast_cache: dict[int, CacheEntry[list[ForecastSlice]]] = {}
        self._backoff = BackoffState()
        self._executor = ThreadPoolExecutor(
            max_workers=max(2, len(self.providers)), thread_name_prefix="rain-switch-provider"
        )

    def __enter__(self) -> ProviderChain:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def backoff(self) -> BackoffState:
        return self._backoff

    def describe(self) -> str:
        return " -> ".join(provider.name for provider in self.providers)

    def get_nowcast(self, force: bool = False) -> Nowcast:
        cached = self._nowcast_cache
        if not force and self._is_valid(cached):
            return cached.payload
        if self._backoff_active(cached):
            return cached.payload

        nowcast = self._first_success(lambda provider: provider.get_nowcast(), "nowcast")
        self._nowcast_cache = CacheEntry(payload=nowcast, timestamp=self._clock())
        return nowcast

    def get_forecast(self, lookahead_minutes: float, force: bool = False) -> list[ForecastSlice]:
        rounded = normalize_lookahead(lookahead_minutes)
        cached = self._forecast_cache.get(rounded)
        if not force and self._is_valid(cached):
            return cached.payload
        if self._backoff_active(cached):
            return cached.payload

        slices = self._first_success(
            lambda provider: provider.get_forecast(rounded), f"forecast({rounded}m)"
        )
        self._forecast_cache[rounded] = CacheEntry(payload=slices, timestamp=self._clock())
        return slices

    def mark_failure(self) -> None:
        """Advance the backoff schedule one step (saturating at the last entry)."""
        state = self._backoff
        state.index = min(state.index + 1, len(self.retry_backoff) - 1)
        state.next_allowed_at = self._clock() + self.retry_backoff[state.index]
        self.logger.debug(
            "Provider backoff advanced to step %d; next attempt after %s",
            state.index,
            state.next_allowed_at.isoformat(),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        for provider in self.providers:
            provider.close()

    def _is_valid(self, entry: CacheEntry[Any] | None) -> bool:
        if entry is None:
            return False
        return self._clock() - entry.timestamp < self.cache_ttl

    def _backoff_active(self, cached: CacheEntry[Any] | None) -> bool:
        """Return True when backoff applies and ``cached`` may be served instead.

        Raises BackoffActiveError when backoff applies and there is nothing to serve.
        """
        next_allowed = self._backoff.next_allowed_at
        if next_allowed is None:
            return False
        now = self._clock()
        if now >= next_allowed:
            return False
        if self._is_valid(cached):
            return True
        raise BackoffActiveError((next_allowed - now).total_seconds())

    def _first_success(self, call: Callable[[WeatherProvider], T], label: str) -> T:
        last_error: Exception | None = None
        for provider in self.providers:
            try:
                result = self._call_with_timeout(provider, call)
            except RainSwitchError as exc:
                last_error = exc
                self.logger.warning("%s provider failed (%s): %s", provider.name, label, exc)
                continue
            except Exception as exc:
                # Adapter bugs and malformed payloads fall through to the next provider too.
                last_error = exc
                self.logger.warning(
                    "%s provider raised %s (%s): %s",
                    provider.name,
                    type(exc).__name__,
                    label,
                    sanitize_text(str(exc)),
                )
                continue
            self._backoff = BackoffState()
            return result

        self.mark_failure()
        raise ChainExhaustedError(
            f"All weather providers failed for {label}: {last_error}",
            last_error=last_error,
        ) from last_error

    def _call_with_timeout(
        self, provider: WeatherProvider, call: Callable[[WeatherProvider], T]
    ) -> T:
        future = self._executor.submit(call, provider)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            # The worker keeps running; its eventual result is discarded.
            raise ProviderTimeoutError(
                f"{provider.name} timed out after {self.timeout_seconds:g}s"
            ) from exc


def build_provider_chain(
    settings: Settings,
    location: ResolvedLocation | None,
    logger: logging.Logger,
    *,
    clock: Callable[[], datetime] | None = None,
) -> ProviderChain:
    """Instantiate providers for the configured mode and wrap them in a chain."""
    mode = settings.provider_mode
    common: dict[str, Any] = {
        "timeout_seconds": settings.provider_timeout_seconds,
        "user_agent": settings.nws_user_agent,
        "clock": clock,
    }
    factories: list[tuple[str, Callable[[], WeatherProvider]]] = [
        (
            "weatherkit",
            lambda: WeatherKitProvider(
                logger,
                location,
                team_id=settings.weatherkit_team_id,
                key_id=settings.weatherkit_key_id,
                private_key_path=settings.weatherkit_private_key_path,
                service_id=settings.weatherkit_service_id,
                **common,
            ),
        ),
        (
            "openweathermap",
            lambda: OpenWeatherMapProvider(
                logger, location, api_key=settings.openweathermap_api_key, **common
            ),
        ),
        (
            "nws",
            lambda: NWSWeatherProvider(logger, location, enabled=settings.nws_enabled, **common),
        ),
        (
            "tomorrow",
            lambda: TomorrowProvider(logger, location, api_key=settings.tomorrow_api_key, **common),
        ),
    ]

    providers: list[WeatherProvider] = []
    for key, factory in factories:
        if mode not in ("auto", key):
            continue
        try:
            provider = factory()
        except ConfigError as exc:
            logger.debug("Skipping provider %s: %s", key, exc)
            continue
        if provider.is_supported():
            providers.append(provider)
        else:
            logger.debug("Skipping provider %s: missing credentials or location", provider.name)
            provider.close()

    chain = ProviderChain(
        providers,
        logger,
        timeout_seconds=settings.provider_timeout_seconds,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        clock=clock,
    )
    logger.info("Weather provider chain: %s", chain.describe())
    return chain
