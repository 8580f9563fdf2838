"""Periodic polling loop feeding every decision engine."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from .decision import DecisionEngine
from .exceptions import JournalError, RainSwitchError
from .journal import JournalWriter
from .models import OutputState
from .weather.chain import ProviderChain
from .weather.models import Nowcast

MIN_INTERVAL_SECONDS = 60
MAX_INTERVAL_SECONDS = 900
DEFAULT_INTERVAL_SECONDS = 180


def clamp_interval(seconds: float) -> float:
    return min(MAX_INTERVAL_SECONDS, max(MIN_INTERVAL_SECONDS, seconds))


class Scheduler:
    """Runs one tick per interval; a failed tick faults every output and holds its value."""

    def __init__(
        self,
        chain: ProviderChain,
        engines: Sequence[DecisionEngine],
        logger: logging.Logger,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        journal: JournalWriter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.chain = chain
        self.engines = list(engines)
        self.logger = logger
        self.interval_seconds = clamp_interval(interval_seconds)
        self.journal = journal
        self._clock = clock or (lambda: datetime.now(UTC))
        self.last_nowcast: Nowcast | None = None
        self.tick_count = 0

    def snapshots(self) -> list[OutputState]:
        return [engine.snapshot() for engine in self.engines]

    def tick(self) -> bool:
        """Poll the chain once and evaluate every engine in configuration order.

        Returns ``False`` when the tick failed; outputs keep their held values
        and are marked faulted. Engines evaluated before a mid-tick failure
        keep their new values, and those transitions are still journaled.
        """
        self.tick_count += 1
        now = self._clock()
        before = [engine.is_on for engine in self.engines]
        nowcast: Nowcast | None = None
        try:
            nowcast = self.chain.get_nowcast()
            for engine in self.engines:
                engine.evaluate(nowcast, now)
        except RainSwitchError as exc:
            self.logger.warning("Weather polling failed: %s", exc)
            self.chain.mark_failure()
            for engine in self.engines:
                engine.mark_fault()
            self._journal(
                "poll_failure",
                {"error": str(exc), "type": type(exc).__name__, "tick": self.tick_count},
            )
            self._journal_transitions(before, nowcast)
            return False

        self.last_nowcast = nowcast
        self._journal(
            "poll_success",
            {
                "tick": self.tick_count,
                "nowcast": nowcast.model_dump(mode="json"),
                "outputs": [state.model_dump(mode="json") for state in self.snapshots()],
            },
        )
        self._journal_transitions(before, nowcast)
        return True

    def _journal_transitions(self, before: list[bool], nowcast: Nowcast | None) -> None:
        for engine, was_on in zip(self.engines, before):
            if was_on != engine.is_on:
                self._journal(
                    "output_transition",
                    {
                        "name": engine.name,
                        "kind": engine.config.type,
                        "is_on": engine.is_on,
                        "provider": nowcast.provider_name if nowcast else None,
                    },
                )

    def run(
        self,
        stop_event: threading.Event,
        max_ticks: int | None = None,
        on_tick: Callable[[bool], None] | None = None,
    ) -> int:
        """Tick until ``stop_event`` is set or ``max_ticks`` ticks ran; return ticks run."""
        self.logger.info(
            "Starting polling loop every %d seconds (providers: %s)",
            self.interval_seconds,
            self.chain.describe(),
        )
        ticks = 0
        while not stop_event.is_set():
            ok = self.tick()
            ticks += 1
            if on_tick is not None:
                on_tick(ok)
            if max_ticks is not None and ticks >= max_ticks:
                break
            if stop_event.wait(self.interval_seconds):
                break
        self.logger.info("Polling loop stopped after %d ticks", ticks)
        return ticks

    def _journal(self, event_type: str, payload: dict[str, Any]) -> None:
        if self.journal is None:
            return
        try:
            self.journal.write_event(event_type, payload=payload)
        except JournalError as exc:
            self.logger.error("Failed to write %s event: %s", event_type, exc)
