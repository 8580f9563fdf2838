"""Application exception classes."""

from __future__ import annotations


class RainSwitchError(Exception):
    """Base class for runtime failures surfaced by the polling pipeline."""


class ConfigError(RainSwitchError):
    """Raised when configuration is invalid or a provider lacks credentials/location."""


class WeatherProviderError(RainSwitchError):
    """Raised when a single provider request or normalization fails."""


class ProviderTimeoutError(WeatherProviderError):
    """Raised when a provider call does not complete within its time budget."""


class ChainExhaustedError(RainSwitchError):
    """Raised when every provider in the chain failed during one attempt."""

    def __init__(self, message: str, *, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class BackoffActiveError(RainSwitchError):
    """Raised when a call is refused because the shared backoff window is active."""

    def __init__(self, remaining_seconds: float) -> None:
        super().__init__(f"Providers backoff in effect for {round(remaining_seconds)}s")
        self.remaining_seconds = remaining_seconds


class LocationError(RainSwitchError):
    """Raised by a single location resolution stage (geocode or IP lookup)."""


class JournalError(Exception):
    """Raised when writing to journal files fails."""
