"""Decision engine triggers, overrides, quiet hours and fault handling."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from rain_switch.config import OutputConfig
from rain_switch.decision import DecisionEngine, scan_forecast
from rain_switch.exceptions import ChainExhaustedError
from rain_switch.quiet_hours import QuietWindow
from rain_switch.weather.models import ForecastSlice, Nowcast

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _nowcast(rate: float, precip_type: str = "rain", pop: float | None = None) -> Nowcast:
    return Nowcast(
        timestamp=T0,
        provider_name="TestProvider",
        precip_mm_hr=rate,
        pop=pop,
        precip_type=precip_type,
    )


def _slice(minutes: int, *, pop: float | None, rate: float, precip_type: str = "rain") -> ForecastSlice:
    return ForecastSlice(
        timestamp=T0 + timedelta(minutes=minutes),
        minutes_from_now=minutes,
        provider_name="TestProvider",
        precip_mm_hr=rate,
        pop=pop,
        precip_type=precip_type,
    )


class ForecastStub:
    def __init__(self, slices: list[ForecastSlice] | None = None) -> None:
        self.slices = slices or []
        self.requests: list[int] = []
        self.error: Exception | None = None

    def __call__(self, lookahead_minutes: int) -> list[ForecastSlice]:
        self.requests.append(lookahead_minutes)
        if self.error is not None:
            raise self.error
        return self.slices


def _engine(
    kind: str = "rain-now",
    forecast: ForecastStub | None = None,
    **kwargs: Any,
) -> DecisionEngine:
    config_fields = {
        key: kwargs.pop(key)
        for key in list(kwargs)
        if key in {"threshold_mm_per_hr", "lookahead_minutes", "pop_threshold", "intensity_threshold_mm_per_hr"}
    }
    config = OutputConfig(type=kind, name=f"{kind} switch", **config_fields)
    kwargs.setdefault("min_on_seconds", 300)
    kwargs.setdefault("min_off_seconds", 300)
    kwargs.setdefault("local_tz", UTC)
    return DecisionEngine(
        config,
        forecast or ForecastStub(),
        logging.getLogger("test_decision_engine"),
        **kwargs,
    )


@pytest.mark.parametrize(
    ("rate", "precip_type", "expected"),
    [
        (0.06, "rain", True),
        (0.04, "rain", False),
        (10.0, "snow", False),
        (0.5, "sleet", True),
        (0.5, "none", False),
    ],
)
def test_rain_now_threshold(rate: float, precip_type: str, expected: bool) -> None:
    engine = _engine("rain-now", threshold_mm_per_hr=0.05)
    state = engine.evaluate(_nowcast(rate, precip_type), T0)
    assert state.is_on is expected


def test_rain_now_default_threshold() -> None:
    engine = _engine("rain-now")
    assert engine.evaluate(_nowcast(0.05), T0).is_on is True


def test_rain_soon_triggers_on_qualifying_slice() -> None:
    forecast = ForecastStub([_slice(30, pop=50, rate=0.3)])
    engine = _engine(
        "rain-soon",
        forecast,
        lookahead_minutes=60,
        pop_threshold=40,
        intensity_threshold_mm_per_hr=0.2,
    )

    state = engine.evaluate(_nowcast(0.0, "none", pop=5), T0)

    assert state.is_on is True
    assert forecast.requests == [60]
    assert state.metadata.precip_mm_hr == pytest.approx(0.3)
    assert state.metadata.probability == pytest.approx(50)
    assert state.metadata.provider_name == "TestProvider"


def test_rain_soon_ignores_slice_beyond_lookahead() -> None:
    forecast = ForecastStub([_slice(90, pop=50, rate=0.3)])
    engine = _engine("rain-soon", forecast, lookahead_minutes=60)
    state = engine.evaluate(_nowcast(0.0, "none"), T0)
    assert state.is_on is False
    assert state.metadata.probability == 0.0


def test_scan_forecast_treats_missing_pop_as_zero() -> None:
    outcome = scan_forecast(
        [_slice(10, pop=None, rate=1.0)],
        "rain",
        lookahead_minutes=60,
        pop_threshold=40,
        intensity_threshold_mm_per_hr=0.2,
    )
    assert outcome.should_activate is False


def test_scan_forecast_picks_first_chronological_match() -> None:
    later = _slice(40, pop=90, rate=2.0)
    earlier = _slice(20, pop=45, rate=0.25)
    outcome = scan_forecast(
        [later, earlier],
        "rain",
        lookahead_minutes=60,
        pop_threshold=40,
        intensity_threshold_mm_per_hr=0.2,
    )
    assert outcome.triggered_slice == earlier


def test_snow_mode_now_or_soon() -> None:
    engine_now = _engine("snow-mode", ForecastStub())
    assert engine_now.evaluate(_nowcast(0.1, "snow"), T0).is_on is True

    forecast = ForecastStub([_slice(15, pop=70, rate=0.4, precip_type="snow")])
    engine_soon = _engine("snow-mode", forecast)
    assert engine_soon.evaluate(_nowcast(0.0, "none"), T0).is_on is True

    rain_forecast = ForecastStub([_slice(15, pop=70, rate=0.4, precip_type="rain")])
    engine_rain = _engine("snow-mode", rain_forecast)
    assert engine_rain.evaluate(_nowcast(0.0, "rain"), T0).is_on is False


def test_hysteresis_holds_output_through_brief_dry_spell() -> None:
    engine = _engine("rain-now", min_on_seconds=300, min_off_seconds=300)
    assert engine.evaluate(_nowcast(1.0), T0).is_on is True
    assert engine.evaluate(_nowcast(0.0), T0 + timedelta(minutes=3)).is_on is True
    assert engine.evaluate(_nowcast(0.0), T0 + timedelta(minutes=5)).is_on is False


def test_manual_override_locks_output_until_expiry() -> None:
    engine = _engine("rain-now", override_minutes=30)
    engine.evaluate(_nowcast(0.0), T0)

    state = engine.set_manual(True, T0)
    assert state.is_on is True
    assert state.override_until == T0 + timedelta(minutes=30)

    assert engine.evaluate(_nowcast(0.0), T0 + timedelta(minutes=10)).is_on is True
    assert engine.evaluate(_nowcast(0.0), T0 + timedelta(minutes=29)).is_on is True

    # Expired: gate was reset so the dry reading is adopted immediately.
    state = engine.evaluate(_nowcast(0.0), T0 + timedelta(minutes=31))
    assert state.is_on is False
    assert state.override_until is None


def test_manual_toggle_without_override_resets_gate() -> None:
    engine = _engine("rain-now", min_on_seconds=600, min_off_seconds=600)
    engine.evaluate(_nowcast(0.0), T0)
    engine.set_manual(True, T0 + timedelta(seconds=5))

    assert engine.is_on is True
    assert engine.snapshot().override_until is None
    # No override window: the next evaluation bootstraps the gate from scratch.
    assert engine.evaluate(_nowcast(0.0), T0 + timedelta(seconds=10)).is_on is False


def test_quiet_hours_freeze_output_but_refresh_metadata() -> None:
    window = QuietWindow.from_strings("22:00", "06:00")
    engine = _engine("rain-now", quiet_window=window)
    engine.evaluate(_nowcast(0.0), T0)

    late = datetime(2026, 3, 1, 23, 30, tzinfo=UTC)
    state = engine.evaluate(_nowcast(2.5), late)

    assert state.is_on is False
    assert state.metadata.last_update == late
    assert state.metadata.precip_mm_hr == pytest.approx(2.5)

    morning = datetime(2026, 3, 2, 6, 0, tzinfo=UTC)
    assert engine.evaluate(_nowcast(2.5), morning).is_on is True


def test_fault_marked_and_cleared_by_successful_evaluation() -> None:
    engine = _engine("rain-now")
    engine.evaluate(_nowcast(1.0), T0)

    engine.mark_fault()
    engine.mark_fault()
    state = engine.snapshot()
    assert state.faulted is True
    assert state.is_on is True

    assert engine.evaluate(_nowcast(1.0), T0 + timedelta(minutes=3)).faulted is False


def test_forecast_error_propagates_and_keeps_state() -> None:
    forecast = ForecastStub()
    forecast.error = ChainExhaustedError("all failed")
    engine = _engine("rain-soon", forecast)

    with pytest.raises(ChainExhaustedError):
        engine.evaluate(_nowcast(0.0, "none"), T0)
    assert engine.is_on is False
    assert engine.snapshot().metadata.last_update is None


def test_probability_falls_back_to_nowcast_then_zero() -> None:
    engine = _engine("rain-now")
    assert engine.evaluate(_nowcast(1.0, pop=80), T0).metadata.probability == 80
    assert engine.evaluate(_nowcast(1.0), T0).metadata.probability == 0.0
