"""Quiet-hour window parsing and membership."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from rain_switch.quiet_hours import QuietWindow, parse_time_of_day


def _at(hour: int, minute: int) -> datetime:
    return datetime(2026, 1, 15, hour, minute, tzinfo=UTC)


def test_overnight_window_wraps_midnight() -> None:
    window = QuietWindow.from_strings("22:00", "06:00")
    assert window is not None
    assert window.contains(_at(23, 30))
    assert not window.contains(_at(12, 0))
    assert window.contains(_at(5, 59))
    assert window.contains(_at(0, 0))


def test_window_is_half_open() -> None:
    window = QuietWindow.from_strings("22:00", "06:00")
    assert window is not None
    assert window.contains(_at(22, 0))
    assert not window.contains(_at(6, 0))


def test_same_day_window() -> None:
    window = QuietWindow(start_minute=parse_time_of_day("13:00"), end_minute=parse_time_of_day("14:30"))
    assert window.contains(_at(13, 0))
    assert window.contains(_at(14, 29))
    assert not window.contains(_at(14, 30))
    assert not window.contains(_at(12, 59))


def test_missing_bound_disables_window() -> None:
    assert QuietWindow.from_strings("22:00", None) is None
    assert QuietWindow.from_strings(None, None) is None


@pytest.mark.parametrize("value", ["24:00", "7", "07:60", "ab:cd", ""])
def test_malformed_time_raises(value: str) -> None:
    with pytest.raises(ValueError):
        parse_time_of_day(value)
