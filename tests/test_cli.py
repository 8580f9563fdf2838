"""CLI offline smoke tests."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from rain_switch.cli import main as cli_main
from rain_switch.weather.base import WeatherProvider
from rain_switch.weather.chain import ProviderChain
from rain_switch.weather.models import ForecastSlice, Nowcast

OUTPUTS = json.dumps(
    [
        {"type": "rain-now", "name": "Raining", "thresholdMmPerHr": 0.1},
        {"type": "rain-soon", "name": "Rain Soon"},
    ]
)


class StaticProvider(WeatherProvider):
    name = "Static"

    def is_supported(self) -> bool:
        return True

    def get_nowcast(self) -> Nowcast:
        return Nowcast(
            timestamp=datetime.now(UTC),
            provider_name=self.name,
            precip_mm_hr=0.8,
            pop=90,
            precip_type="rain",
        )

    def get_forecast(self, lookahead_minutes: int) -> list[ForecastSlice]:
        return []


def _set_required_env(monkeypatch: Any, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOCATION_LAT", "40.0")
    monkeypatch.setenv("LOCATION_LON", "-73.0")
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "storage"))
    monkeypatch.setenv("JOURNAL_DIR", str(tmp_path / "journal"))
    monkeypatch.setenv("JOURNAL_ENABLED", "true")
    monkeypatch.setenv("NWS_USER_AGENT", "rain-switch-tests/0.1")
    monkeypatch.setenv("OUTPUTS", OUTPUTS)
    monkeypatch.delenv("QUIET_HOURS_START", raising=False)
    monkeypatch.delenv("QUIET_HOURS_END", raising=False)


def _event_types(journal_dir: Path) -> list[str]:
    event_types: list[str] = []
    for path in journal_dir.glob("*.jsonl"):
        for line in path.read_text(encoding="utf-8").strip().splitlines():
            event_types.append(json.loads(line)["event_type"])
    return event_types


def test_cli_once_runs_single_tick(monkeypatch: Any, tmp_path: Path, capsys: Any) -> None:
    _set_required_env(monkeypatch, tmp_path)
    chain = ProviderChain([StaticProvider()], logging.getLogger("test_cli"))
    monkeypatch.setattr(
        "rain_switch.cli.build_provider_chain", lambda settings, location, logger: chain
    )
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--once"])

    exit_code = cli_main()
    assert exit_code == 0

    output = capsys.readouterr().out
    assert "Rain Switch Outputs" in output
    assert "ON" in output

    event_types = _event_types(tmp_path / "journal")
    assert event_types[0] == "startup"
    assert "poll_success" in event_types
    assert "output_transition" in event_types
    assert event_types[-1] == "shutdown"

    cache = json.loads(
        (tmp_path / "storage" / "rain-switch" / "location-cache.json").read_text(encoding="utf-8")
    )
    assert cache["explicit"]["source"] == "config"


def test_cli_describe_prints_location_and_providers(
    monkeypatch: Any, tmp_path: Path, capsys: Any
) -> None:
    _set_required_env(monkeypatch, tmp_path)
    monkeypatch.setenv("PROVIDER_MODE", "openweathermap")
    monkeypatch.setenv("OPENWEATHERMAP_API_KEY", "owm-test-key")
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--describe"])

    assert cli_main() == 0

    output = capsys.readouterr().out
    assert "source=config" in output
    assert "Providers: OpenWeatherMap" in output


def test_cli_invalid_config_exits_2(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path)
    monkeypatch.setenv("LOCATION_LAT", "123")
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--once"])
    assert cli_main() == 2


def test_cli_invalid_max_ticks_exits_2(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path)
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--max-ticks", "0"])
    assert cli_main() == 2


def test_cli_no_usable_provider_exits_4(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path)
    monkeypatch.setenv("PROVIDER_MODE", "tomorrow")
    monkeypatch.delenv("TOMORROW_API_KEY", raising=False)
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--once"])

    assert cli_main() == 4
    assert _event_types(tmp_path / "journal")[-1] == "shutdown"


def test_cli_journal_init_failure_exits_3(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path)
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    monkeypatch.setenv("JOURNAL_DIR", str(blocker / "journal"))
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--once"])
    assert cli_main() == 3


def test_cli_without_outputs_skips_providers(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path)
    monkeypatch.setenv("OUTPUTS", "[]")

    def _unexpected(*args: Any, **kwargs: Any) -> Any:
        pytest.fail("provider chain should not be built without outputs")

    monkeypatch.setattr("rain_switch.cli.build_provider_chain", _unexpected)
    monkeypatch.setattr(sys, "argv", ["rain-switch", "--once"])
    assert cli_main() == 0
