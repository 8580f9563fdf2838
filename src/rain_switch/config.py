"""Typed settings loader for the rain switch poller."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError

from .exceptions import ConfigError
from .models import OutputKind
from .quiet_hours import QuietWindow

DEFAULT_RETRY_BACKOFF_SECONDS: tuple[int, ...] = (30, 60, 120, 300)

ProviderMode = Literal["auto", "weatherkit", "openweathermap", "nws", "tomorrow"]
LocationMode = Literal["explicit", "auto", "geocode"]


class LocationConfig(BaseModel):
    """Location inputs handed to the resolver."""

    lat: float | None = None
    lon: float | None = None
    address: str | None = None
    mode: LocationMode | None = None


class OutputConfig(BaseModel):
    """One monitored output (camelCase keys accepted for existing configs)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: OutputKind
    name: str
    threshold_mm_per_hr: float | None = None
    lookahead_minutes: int | None = None
    pop_threshold: float | None = None
    intensity_threshold_mm_per_hr: float | None = None
    enabled: bool = True

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("output name must not be empty")
        return value.strip()

    @field_validator("lookahead_minutes")
    @classmethod
    def lookahead_positive(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("lookaheadMinutes must be > 0")
        return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    location_lat: float | None = Field(default=None, alias="LOCATION_LAT")
    location_lon: float | None = Field(default=None, alias="LOCATION_LON")
    location_address: str | None = Field(default=None, alias="LOCATION_ADDRESS")
    location_mode: LocationMode | None = Field(default=None, alias="LOCATION_MODE")
    storage_path: Path | None = Field(default=None, alias="STORAGE_PATH")

    provider_mode: ProviderMode = Field(default="auto", alias="PROVIDER_MODE")
    weatherkit_team_id: str | None = Field(default=None, alias="WEATHERKIT_TEAM_ID")
    weatherkit_key_id: str | None = Field(default=None, alias="WEATHERKIT_KEY_ID", repr=False)
    weatherkit_private_key_path: Path | None = Field(
        default=None, alias="WEATHERKIT_PRIVATE_KEY_PATH", repr=False
    )
    weatherkit_service_id: str | None = Field(default=None, alias="WEATHERKIT_SERVICE_ID")
    openweathermap_api_key: str | None = Field(
        default=None, alias="OPENWEATHERMAP_API_KEY", repr=False
    )
    tomorrow_api_key: str | None = Field(default=None, alias="TOMORROW_API_KEY", repr=False)
    nws_enabled: bool = Field(default=True, alias="NWS_ENABLED")
    nws_user_agent: str = Field(
        default="rain-switch/0.1 (contact: rain-switch@example.com)",
        alias="NWS_USER_AGENT",
    )

    poll_interval_seconds: int = Field(default=180, alias="POLL_INTERVAL_SECONDS")
    min_on_duration_seconds: float = Field(default=300, alias="MIN_ON_DURATION_SECONDS")
    min_off_duration_seconds: float = Field(default=300, alias="MIN_OFF_DURATION_SECONDS")
    provider_timeout_seconds: float = Field(default=5.0, alias="PROVIDER_TIMEOUT_SECONDS")
    cache_ttl_seconds: float = Field(default=60, alias="CACHE_TTL_SECONDS")
    retry_backoff_seconds: list[float] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_BACKOFF_SECONDS),
        alias="RETRY_BACKOFF_SECONDS",
    )
    override_minutes: float | None = Field(default=None, alias="OVERRIDE_MINUTES")
    quiet_hours_start: str | None = Field(default=None, alias="QUIET_HOURS_START")
    quiet_hours_end: str | None = Field(default=None, alias="QUIET_HOURS_END")

    outputs: list[OutputConfig] = Field(default_factory=list, alias="OUTPUTS")

    log_level: Literal["debug", "info", "warn", "error"] = Field(default="info", alias="LOG_LEVEL")
    journal_dir: Path = Field(default=Path("./data/journal"), alias="JOURNAL_DIR")
    journal_enabled: bool = Field(default=True, alias="JOURNAL_ENABLED")

    @field_validator(
        "location_lat",
        "location_lon",
        "location_address",
        "location_mode",
        "storage_path",
        "weatherkit_team_id",
        "weatherkit_key_id",
        "weatherkit_private_key_path",
        "weatherkit_service_id",
        "openweathermap_api_key",
        "tomorrow_api_key",
        "override_minutes",
        "quiet_hours_start",
        "quiet_hours_end",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: Any) -> Any:
        """Treat empty env-string values as unset."""
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("retry_backoff_seconds")
    @classmethod
    def default_empty_backoff(cls, value: list[float]) -> list[float]:
        """An empty schedule falls back to the default one."""
        if not value:
            return list(DEFAULT_RETRY_BACKOFF_SECONDS)
        if any(item < 0 for item in value):
            raise ValueError("RETRY_BACKOFF_SECONDS entries must be >= 0.")
        return value

    @model_validator(mode="after")
    def validate_settings(self) -> Settings:
        """Cross-field checks."""
        has_lat = self.location_lat is not None
        has_lon = self.location_lon is not None
        if has_lat != has_lon:
            raise ValueError("LOCATION_LAT and LOCATION_LON must be set together.")
        if has_lat and not (-90 <= self.location_lat <= 90):
            raise ValueError("LOCATION_LAT must be between -90 and 90.")
        if has_lon and not (-180 <= self.location_lon <= 180):
            raise ValueError("LOCATION_LON must be between -180 and 180.")
        if not self.nws_user_agent.strip():
            raise ValueError("NWS_USER_AGENT must not be empty.")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("PROVIDER_TIMEOUT_SECONDS must be > 0.")
        if self.cache_ttl_seconds < 0:
            raise ValueError("CACHE_TTL_SECONDS must be >= 0.")
        if self.override_minutes is not None and self.override_minutes < 0:
            raise ValueError("OVERRIDE_MINUTES must be >= 0 when set.")
        if bool(self.quiet_hours_start) != bool(self.quiet_hours_end):
            raise ValueError("QUIET_HOURS_START and QUIET_HOURS_END must be set together.")
        # Raises ValueError on malformed HH:MM.
        QuietWindow.from_strings(self.quiet_hours_start, self.quiet_hours_end)
        return self

    def location_config(self) -> LocationConfig | None:
        """Return location inputs, or ``None`` when nothing location-related is configured."""
        if (
            self.location_lat is None
            and self.location_lon is None
            and not self.location_address
            and self.location_mode is None
        ):
            return None
        return LocationConfig(
            lat=self.location_lat,
            lon=self.location_lon,
            address=self.location_address,
            mode=self.location_mode,
        )

    def quiet_window(self) -> QuietWindow | None:
        return QuietWindow.from_strings(self.quiet_hours_start, self.quiet_hours_end)

    def enabled_outputs(self) -> list[OutputConfig]:
        return [output for output in self.outputs if output.enabled]

    def safe_summary(self) -> dict[str, Any]:
        """Return config summary safe for journaling (no credentials)."""
        return {
            "provider_mode": self.provider_mode,
            "location_mode": self.location_mode,
            "has_explicit_location": self.location_lat is not None,
            "has_address": bool(self.location_address),
            "weatherkit_configured": bool(
                self.weatherkit_team_id and self.weatherkit_key_id and self.weatherkit_private_key_path
            ),
            "openweathermap_configured": bool(self.openweathermap_api_key),
            "tomorrow_configured": bool(self.tomorrow_api_key),
            "nws_enabled": self.nws_enabled,
            "poll_interval_seconds": self.poll_interval_seconds,
            "min_on_duration_seconds": self.min_on_duration_seconds,
            "min_off_duration_seconds": self.min_off_duration_seconds,
            "provider_timeout_seconds": self.provider_timeout_seconds,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "override_minutes": self.override_minutes,
            "quiet_hours": (
                f"{self.quiet_hours_start}-{self.quiet_hours_end}"
                if self.quiet_hours_start
                else None
            ),
            "outputs": [output.model_dump(mode="json") for output in self.enabled_outputs()],
        }


def load_settings() -> Settings:
    """Load and validate settings, raising ConfigError on failure."""
    try:
        settings = Settings()
    except (ValidationError, SettingsError) as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed reading environment/.env: {exc}") from exc
    return settings
