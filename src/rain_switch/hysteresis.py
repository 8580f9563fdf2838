"""Debounce state machine enforcing minimum on/off dwell times."""

from __future__ import annotations

import math
from datetime import datetime, timedelta


def _clamp_dwell(seconds: float) -> timedelta:
    if not isinstance(seconds, (int, float)) or not math.isfinite(seconds):
        return timedelta(0)
    return timedelta(seconds=max(0.0, float(seconds)))


class HysteresisGate:
    """Convert a noisy desired state into a stable one.

    A change is accepted only once the current state has been held for its
    dwell time (``min_on`` when leaving ON, ``min_off`` when leaving OFF).
    Rejected requests are dropped, not queued. The first call after
    construction or :meth:`reset` adopts the desired value immediately.
    """

    def __init__(self, min_on_seconds: float, min_off_seconds: float) -> None:
        self.min_on = _clamp_dwell(min_on_seconds)
        self.min_off = _clamp_dwell(min_off_seconds)
        self._state = False
        self._last_flip: datetime | None = None

    @property
    def state(self) -> bool:
        return self._state

    @property
    def last_flip(self) -> datetime | None:
        return self._last_flip

    def next(self, desired: bool, now: datetime) -> bool:
        """Feed one desired value observed at ``now`` and return the stable state."""
        if self._last_flip is None:
            self._state = desired
            self._last_flip = now
            return self._state

        if desired == self._state:
            return self._state

        dwell = self.min_on if self._state else self.min_off
        if now - self._last_flip >= dwell:
            self._state = desired
            self._last_flip = now
        return self._state

    def reset(self, initial: bool = False) -> None:
        """Force ``initial`` and clear the flip clock so the next call bootstraps."""
        self._state = initial
        self._last_flip = None
