"""Per-output decision logic: triggers, hysteresis, manual overrides and quiet hours."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo

from .config import OutputConfig
from .hysteresis import HysteresisGate
from .models import OutputMetadata, OutputState
from .quiet_hours import QuietWindow
from .weather.models import ForecastSlice, Nowcast, PrecipType

DEFAULT_RAIN_THRESHOLD_MM_HR = 0.05
DEFAULT_SNOW_THRESHOLD_MM_HR = 0.05
DEFAULT_LOOKAHEAD_MINUTES = 60
DEFAULT_POP_THRESHOLD = 40.0
DEFAULT_INTENSITY_THRESHOLD_MM_HR = 0.2

ForecastSource = Callable[[int], list[ForecastSlice]]


@dataclass(frozen=True, slots=True)
class ForecastOutcome:
    should_activate: bool
    triggered_slice: ForecastSlice | None = None


def is_rain(nowcast: Nowcast) -> bool:
    """Sleet counts as rain for rain-now outputs."""
    return nowcast.precip_type in ("rain", "sleet")


def scan_forecast(
    slices: list[ForecastSlice],
    target: PrecipType,
    *,
    lookahead_minutes: int,
    pop_threshold: float,
    intensity_threshold_mm_per_hr: float,
) -> ForecastOutcome:
    """Return the first slice, in chronological order, that meets every threshold."""
    for item in sorted(slices, key=lambda entry: entry.timestamp):
        if item.minutes_from_now < 0 or item.minutes_from_now > lookahead_minutes:
            continue
        if item.precip_type != target:
            continue
        if (item.pop or 0.0) < pop_threshold:
            continue
        if item.precip_mm_hr < intensity_threshold_mm_per_hr:
            continue
        return ForecastOutcome(should_activate=True, triggered_slice=item)
    return ForecastOutcome(should_activate=False)


class DecisionEngine:
    """Turns nowcast/forecast readings into one stable boolean output.

    Each engine owns its hysteresis gate and override window. A manual toggle
    wins over automatic evaluation until the override expires; quiet hours
    freeze the held value without touching the gate.
    """

    def __init__(
        self,
        config: OutputConfig,
        forecast: ForecastSource,
        logger: logging.Logger,
        *,
        min_on_seconds: float = 300,
        min_off_seconds: float = 300,
        override_minutes: float | None = None,
        quiet_window: QuietWindow | None = None,
        local_tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self._forecast = forecast
        self._gate = HysteresisGate(min_on_seconds, min_off_seconds)
        self.override_minutes = override_minutes
        self.quiet_window = quiet_window
        self.local_tz = local_tz
        self._clock = clock or (lambda: datetime.now(UTC))

        self._is_on = False
        self._faulted = False
        self._override_value: bool | None = None
        self._override_until: datetime | None = None
        self._metadata = OutputMetadata()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_on(self) -> bool:
        return self._is_on

    @property
    def faulted(self) -> bool:
        return self._faulted

    @property
    def gate(self) -> HysteresisGate:
        return self._gate

    def snapshot(self) -> OutputState:
        return OutputState(
            name=self.config.name,
            kind=self.config.type,
            is_on=self._is_on,
            faulted=self._faulted,
            override_until=self._override_until,
            metadata=self._metadata.model_copy(),
        )

    def evaluate(self, nowcast: Nowcast, now: datetime | None = None) -> OutputState:
        """Run one evaluation cycle.

        Forecast errors raised by the forecast source propagate to the caller,
        leaving the held value and metadata untouched.
        """
        now = now or self._clock()

        if self._override_active(now):
            self.logger.debug(
                "%s is in manual override until %s",
                self.name,
                self._override_until.isoformat(),
            )
            self._adopt(bool(self._override_value))
            self._publish(nowcast, None, now)
            self._clear_fault()
            return self.snapshot()

        if self._override_until is not None:
            self.logger.info("%s manual override expired", self.name)
            self._override_until = None
            self._override_value = None
            self._gate.reset(self._is_on)

        desired, outcome = self._desired(nowcast)
        triggered = outcome.triggered_slice if outcome else None

        if self._in_quiet_hours(now):
            self.logger.debug(
                "Quiet hours active for %s; keeping state %s",
                self.name,
                "ON" if self._is_on else "OFF",
            )
            self._publish(nowcast, triggered, now)
            self._clear_fault()
            return self.snapshot()

        self._adopt(self._gate.next(desired, now))
        self._publish(nowcast, triggered, now)
        self._clear_fault()
        return self.snapshot()

    def set_manual(self, value: bool, now: datetime | None = None) -> OutputState:
        """Apply a manual toggle; starts an override window when configured."""
        now = now or self._clock()
        self._is_on = value
        if self.override_minutes and self.override_minutes > 0:
            self._override_value = value
            self._override_until = now + timedelta(minutes=self.override_minutes)
            self.logger.info(
                "%s manually set to %s for %g minutes",
                self.name,
                "ON" if value else "OFF",
                self.override_minutes,
            )
        self._gate.reset(value)
        return self.snapshot()

    def mark_fault(self) -> None:
        if not self._faulted:
            self.logger.warning("%s marking fault state", self.name)
            self._faulted = True

    def _override_active(self, now: datetime) -> bool:
        return (
            self._override_until is not None
            and self._override_value is not None
            and now < self._override_until
        )

    def _in_quiet_hours(self, now: datetime) -> bool:
        if self.quiet_window is None:
            return False
        return self.quiet_window.contains(now.astimezone(self.local_tz))

    def _desired(self, nowcast: Nowcast) -> tuple[bool, ForecastOutcome | None]:
        kind = self.config.type
        if kind == "rain-now":
            threshold = self._value(self.config.threshold_mm_per_hr, DEFAULT_RAIN_THRESHOLD_MM_HR)
            return is_rain(nowcast) and nowcast.precip_mm_hr >= threshold, None
        if kind == "rain-soon":
            outcome = self._scan("rain")
            return outcome.should_activate, outcome
        threshold = self._value(self.config.threshold_mm_per_hr, DEFAULT_SNOW_THRESHOLD_MM_HR)
        now_active = nowcast.precip_type == "snow" and nowcast.precip_mm_hr >= threshold
        outcome = self._scan("snow")
        return now_active or outcome.should_activate, outcome

    def _scan(self, target: PrecipType) -> ForecastOutcome:
        lookahead = int(self._value(self.config.lookahead_minutes, DEFAULT_LOOKAHEAD_MINUTES))
        slices = self._forecast(lookahead)
        return scan_forecast(
            slices,
            target,
            lookahead_minutes=lookahead,
            pop_threshold=self._value(self.config.pop_threshold, DEFAULT_POP_THRESHOLD),
            intensity_threshold_mm_per_hr=self._value(
                self.config.intensity_threshold_mm_per_hr, DEFAULT_INTENSITY_THRESHOLD_MM_HR
            ),
        )

    @staticmethod
    def _value(configured: float | None, default: float) -> float:
        return default if configured is None else configured

    def _adopt(self, state: bool) -> None:
        if state == self._is_on:
            return
        self._is_on = state
        self.logger.info("%s -> %s", self.name, "ON" if state else "OFF")

    def _publish(self, nowcast: Nowcast, triggered: ForecastSlice | None, now: datetime) -> None:
        intensity = triggered.precip_mm_hr if triggered else nowcast.precip_mm_hr
        probability = triggered.pop if triggered and triggered.pop is not None else nowcast.pop
        self._metadata = OutputMetadata(
            last_update=now,
            provider_name=nowcast.provider_name,
            precip_mm_hr=round(intensity, 3),
            probability=probability if probability is not None else 0.0,
        )

    def _clear_fault(self) -> None:
        if self._faulted:
            self.logger.info("%s fault cleared", self.name)
            self._faulted = False
