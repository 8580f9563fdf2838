"""Location resolution with a persistent, method-keyed JSON cache.

Resolution order (first match wins):

1. explicit ``lat``/``lon`` from config (no network)
2. free-text address, via cached or fresh geocode
3. IP geolocation when mode is ``auto`` or nothing is configured
4. a previously cached explicit coordinate
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx

from .config import LocationConfig
from .exceptions import LocationError
from .models import ResolvedLocation
from .redaction import sanitize_text

CACHE_DIR_NAME = "rain-switch"
CACHE_FILE_NAME = "location-cache.json"
LEGACY_CACHE_FILE = Path.home() / ".rain-switch-cache.json"
AUTO_CACHE_MAX_AGE = timedelta(days=7)

EXPLICIT_KEY = "explicit"
AUTO_KEY = "auto"

GEOCODE_URL = "https://nominatim.openstreetmap.org/search"
IP_LOOKUP_URL = "https://ipapi.co/json/"
DEFAULT_USER_AGENT = "rain-switch/0.1"


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _address_key(address: str) -> str:
    return f"addr:{address.lower()}"


def cache_file_for(storage_path: Path | None, legacy_path: Path = LEGACY_CACHE_FILE) -> Path:
    """Return the cache file location for a host storage path."""
    if storage_path is not None:
        return Path(storage_path) / CACHE_DIR_NAME / CACHE_FILE_NAME
    return legacy_path


class LocationResolver:
    """Resolve a coordinate for the provider chain, degrading through fallbacks."""

    def __init__(
        self,
        logger: logging.Logger,
        *,
        storage_path: Path | None = None,
        timeout_seconds: float = 5.0,
        user_agent: str = DEFAULT_USER_AGENT,
        legacy_cache_path: Path = LEGACY_CACHE_FILE,
        clock: Callable[[], datetime] | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.logger = logger
        self.storage_path = storage_path
        self.legacy_cache_path = legacy_cache_path
        self.cache_path = cache_file_for(storage_path, legacy_cache_path)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=timeout_seconds,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    def __enter__(self) -> LocationResolver:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def resolve(self, config: LocationConfig | None) -> ResolvedLocation | None:
        """Resolve a location; never raises, returns ``None`` when every stage fails."""
        cache = self._load_cache()

        if config is not None and _is_finite_number(config.lat) and _is_finite_number(config.lon):
            location = ResolvedLocation(latitude=config.lat, longitude=config.lon, source="config")
            self._store(cache, EXPLICIT_KEY, location)
            return location

        if config is not None and config.address:
            location = self._resolve_address(cache, config.address)
            if location is not None:
                return location

        if config is None or config.mode == "auto":
            location = self._resolve_auto(cache)
            if location is not None:
                return location

        fallback = self._entry_to_location(cache.get(EXPLICIT_KEY))
        if fallback is not None:
            self.logger.debug("Falling back to cached explicit coordinates")
            return fallback

        return None

    def _resolve_address(self, cache: dict[str, Any], address: str) -> ResolvedLocation | None:
        key = _address_key(address)
        cached = self._entry_to_location(cache.get(key))
        if cached is not None:
            self.logger.debug("Using cached geocode for %s", address)
            return cached
        try:
            location = self._geocode(address)
        except LocationError as exc:
            self.logger.warning("Error geocoding %s: %s", address, exc)
            return None
        if location is None:
            self.logger.warning("Failed to geocode address %s", address)
            return None
        self._store(cache, key, location)
        self.logger.info(
            "Geocoded %s to %.4f,%.4f", address, location.latitude, location.longitude
        )
        return location

    def _resolve_auto(self, cache: dict[str, Any]) -> ResolvedLocation | None:
        entry = cache.get(AUTO_KEY)
        cached = self._entry_to_location(entry)
        if cached is not None and self._entry_age(entry) < AUTO_CACHE_MAX_AGE:
            self.logger.debug("Using cached auto location")
            return cached
        try:
            location = self._lookup_ip()
        except LocationError as exc:
            self.logger.warning("Automatic location lookup failed: %s", exc)
            return None
        if location is None:
            self.logger.warning("Automatic location lookup returned no coordinates")
            return None
        self._store(cache, AUTO_KEY, location)
        self.logger.info(
            "Resolved automatic location to %.4f,%.4f", location.latitude, location.longitude
        )
        return location

    def _geocode(self, address: str) -> ResolvedLocation | None:
        payload = self._request_json(
            GEOCODE_URL,
            params={"format": "json", "q": address, "limit": 1},
            context="geocode",
        )
        if not isinstance(payload, list) or not payload:
            return None
        first = payload[0]
        if not isinstance(first, dict):
            return None
        lat = self._as_float(first.get("lat"))
        lon = self._as_float(first.get("lon"))
        if lat is None or lon is None:
            return None
        return ResolvedLocation(latitude=lat, longitude=lon, source="geocode")

    def _lookup_ip(self) -> ResolvedLocation | None:
        payload = self._request_json(IP_LOOKUP_URL, params=None, context="IP lookup")
        if not isinstance(payload, dict):
            return None
        lat = payload.get("latitude", payload.get("lat"))
        lon = payload.get("longitude", payload.get("lon"))
        if not _is_finite_number(lat) or not _is_finite_number(lon):
            return None
        return ResolvedLocation(latitude=float(lat), longitude=float(lon), source="ip")

    def _request_json(self, url: str, params: dict[str, Any] | None, context: str) -> Any:
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise LocationError(
                f"{context} failed with status {exc.response.status_code}: "
                f"{sanitize_text(exc.response.text[:200])}"
            ) from exc
        except httpx.HTTPError as exc:
            raise LocationError(f"{context} request failed: {type(exc).__name__}: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise LocationError(f"{context} returned non-JSON response.") from exc

    def _load_cache(self) -> dict[str, Any]:
        try:
            if self.cache_path.exists():
                return self._read_cache_file(self.cache_path)
            if self.storage_path is not None and self.legacy_cache_path.exists():
                legacy = self._read_cache_file(self.legacy_cache_path)
                self.logger.info(
                    "Migrating legacy location cache %s -> %s",
                    self.legacy_cache_path,
                    self.cache_path,
                )
                self._save_cache(legacy)
                return legacy
        except (OSError, ValueError) as exc:
            self.logger.debug("Ignoring unreadable location cache: %s", exc)
        return {}

    @staticmethod
    def _read_cache_file(path: Path) -> dict[str, Any]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"location cache {path} is not a JSON object")
        return data

    def _save_cache(self, cache: dict[str, Any]) -> None:
        try:
            if self.storage_path is not None:
                self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(cache, indent=2), encoding="utf-8")
        except OSError as exc:
            self.logger.debug("Failed writing location cache %s: %s", self.cache_path, exc)

    def _store(self, cache: dict[str, Any], key: str, location: ResolvedLocation) -> None:
        cache[key] = {
            "lat": location.latitude,
            "lon": location.longitude,
            "source": location.source,
            "ts": int(self._clock().timestamp() * 1000),
        }
        self._save_cache(cache)

    @staticmethod
    def _entry_to_location(entry: Any) -> ResolvedLocation | None:
        if not isinstance(entry, dict):
            return None
        lat = entry.get("lat")
        lon = entry.get("lon")
        if not _is_finite_number(lat) or not _is_finite_number(lon):
            return None
        source = entry.get("source")
        return ResolvedLocation(
            latitude=float(lat),
            longitude=float(lon),
            source=source if isinstance(source, str) and source else "config",
        )

    def _entry_age(self, entry: Any) -> timedelta:
        ts = entry.get("ts") if isinstance(entry, dict) else None
        if not _is_finite_number(ts):
            return timedelta.max
        try:
            stored_at = datetime.fromtimestamp(ts / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return timedelta.max
        return self._clock() - stored_at

    @staticmethod
    def _as_float(value: Any) -> float | None:
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                return None
        if _is_finite_number(value):
            return float(value)
        return None
