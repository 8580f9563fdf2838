"""NWS gridpoint provider normalization."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import pytest

from rain_switch.exceptions import WeatherProviderError
from rain_switch.models import ResolvedLocation
from rain_switch.weather.nws import NWSWeatherProvider, parse_duration_minutes, parse_valid_time

NOW = datetime(2026, 3, 1, 12, 30, tzinfo=UTC)
POINTS_URL = "https://api.weather.gov/points/40.0000,-73.0000"
GRID_URL = "https://api.weather.gov/gridpoints/OKX/33,35"

POINTS_PAYLOAD = {"properties": {"gridId": "OKX", "gridX": 33, "gridY": 35}}
GRID_PAYLOAD = {
    "properties": {
        "quantitativePrecipitation": {
            "uom": "wmoUnit:mm",
            "values": [
                {"validTime": "2026-03-01T12:00:00+00:00/PT1H", "value": 2.0},
                {"validTime": "2026-03-01T13:00:00+00:00/PT6H", "value": 6.0},
            ],
        },
        "probabilityOfPrecipitation": {
            "values": [
                {"validTime": "2026-03-01T12:00:00+00:00/PT1H", "value": 70},
                {"validTime": "2026-03-01T13:00:00+00:00/PT6H", "value": 85},
            ]
        },
        "weather": {
            "values": [
                {
                    "validTime": "2026-03-01T12:00:00+00:00/PT1H",
                    "value": [{"coverage": "likely", "weather": "rain_showers"}],
                },
                {
                    "validTime": "2026-03-01T13:00:00+00:00/PT6H",
                    "value": [
                        {"coverage": "chance", "weather": "rain"},
                        {"coverage": "likely", "weather": "snow"},
                    ],
                },
            ]
        },
    }
}


def _make_provider(
    location: ResolvedLocation | None = ResolvedLocation(latitude=40.0, longitude=-73.0, source="config"),
    **kwargs: Any,
) -> NWSWeatherProvider:
    return NWSWeatherProvider(
        logging.getLogger("test_nws_provider"),
        location,
        user_agent="rain-switch-tests/0.1 (contact: test@example.com)",
        clock=lambda: NOW,
        **kwargs,
    )


def _install_responses(provider: NWSWeatherProvider) -> list[str]:
    called: list[str] = []
    responses = {POINTS_URL: POINTS_PAYLOAD, GRID_URL: GRID_PAYLOAD}

    def _fake_request(url: str, context: str, **kwargs: Any) -> dict[str, Any]:
        called.append(url)
        return responses[url]

    provider._request_json = _fake_request  # type: ignore[assignment]
    return called


def test_nowcast_uses_entries_covering_now() -> None:
    provider = _make_provider()
    _install_responses(provider)

    nowcast = provider.get_nowcast()

    assert nowcast.provider_name == "NOAA/NWS"
    assert nowcast.precip_mm_hr == pytest.approx(2.0)
    assert nowcast.pop == 70
    assert nowcast.precip_type == "rain"


def test_forecast_merges_series_and_filters_window() -> None:
    provider = _make_provider()
    _install_responses(provider)

    slices = provider.get_forecast(60)

    assert len(slices) == 1
    only = slices[0]
    assert only.minutes_from_now == 30
    # 6 mm over six hours.
    assert only.precip_mm_hr == pytest.approx(1.0)
    assert only.pop == 85
    assert only.precip_type == "snow"


def test_grid_point_and_payload_are_memoized() -> None:
    provider = _make_provider()
    called = _install_responses(provider)

    provider.get_nowcast()
    provider.get_forecast(120)
    provider.get_nowcast()

    assert called == [POINTS_URL, GRID_URL]


def test_type_inferred_from_rate_without_weather_series() -> None:
    provider = _make_provider()
    payload = {
        "properties": {
            "quantitativePrecipitation": {
                "values": [{"validTime": "2026-03-01T12:00:00+00:00/PT1H", "value": 0.5}]
            }
        }
    }
    provider._grid_point = None
    provider._request_json = (  # type: ignore[assignment]
        lambda url, context, **kwargs: POINTS_PAYLOAD if url == POINTS_URL else payload
    )

    nowcast = provider.get_nowcast()
    assert nowcast.precip_type == "rain"
    assert nowcast.pop is None


def test_missing_properties_raises() -> None:
    provider = _make_provider()
    provider._request_json = (  # type: ignore[assignment]
        lambda url, context, **kwargs: POINTS_PAYLOAD if url == POINTS_URL else {"type": "Feature"}
    )
    with pytest.raises(WeatherProviderError, match="missing 'properties'"):
        provider.get_nowcast()


def test_points_response_without_grid_raises() -> None:
    provider = _make_provider()
    provider._request_json = lambda url, context, **kwargs: {"properties": {}}  # type: ignore[assignment]
    with pytest.raises(WeatherProviderError, match="missing grid data"):
        provider.get_nowcast()


def test_support_requires_location_and_enabled_flag() -> None:
    assert _make_provider().is_supported()
    assert not _make_provider(location=None).is_supported()
    assert not _make_provider(enabled=False).is_supported()


@pytest.mark.parametrize(
    ("value", "expected"),
    [("PT1H", 60), ("PT3H", 180), ("PT30M", 30), ("P1DT6H", 1800), ("garbage", 60), ("PT0H", 60)],
)
def test_parse_duration_minutes(value: str, expected: int) -> None:
    assert parse_duration_minutes(value) == expected


def test_parse_valid_time_converts_offset_to_utc() -> None:
    parsed = parse_valid_time("2026-02-24T18:00:00-05:00/PT2H")
    assert parsed is not None
    start, end, duration = parsed
    assert start.tzinfo is not None
    assert start.astimezone(UTC).hour == 23
    assert (end - start).total_seconds() == 7200
    assert duration == 120


def test_parse_valid_time_rejects_malformed() -> None:
    assert parse_valid_time("2026-02-24T18:00:00Z") is None
    assert parse_valid_time(None) is None


def test_parse_valid_time_rejects_out_of_range_duration() -> None:
    assert parse_valid_time("2026-03-01T11:00:00+00:00/P9999999D") is None


def test_out_of_range_entries_are_skipped() -> None:
    provider = _make_provider()
    properties = dict(GRID_PAYLOAD["properties"])
    properties["quantitativePrecipitation"] = {
        "uom": "wmoUnit:mm",
        "values": [
            {"validTime": "2026-03-01T11:00:00+00:00/P9999999D", "value": 50.0},
            {"validTime": "2026-03-01T12:00:00+00:00/PT1H", "value": 2.0},
        ],
    }
    responses = {POINTS_URL: POINTS_PAYLOAD, GRID_URL: {"properties": properties}}
    provider._request_json = lambda url, context, **kwargs: responses[url]  # type: ignore[assignment]

    assert provider.get_nowcast().precip_mm_hr == pytest.approx(2.0)
