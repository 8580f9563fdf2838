"""Daily quiet-hour windows during which automatic output changes are frozen."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time_of_day(value: str) -> int:
    """Parse ``HH:MM`` (24-hour) into minutes after midnight."""
    match = _HHMM_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM.")
    hours = int(match.group(1))
    minutes = int(match.group(2))
    if hours >= 24 or minutes >= 60:
        raise ValueError(f"Invalid time {value!r}; hour must be <24 and minute <60.")
    return hours * 60 + minutes


@dataclass(frozen=True, slots=True)
class QuietWindow:
    """Half-open ``[start, end)`` minute-of-day range; wraps midnight when start > end."""

    start_minute: int
    end_minute: int

    @classmethod
    def from_strings(cls, start: str | None, end: str | None) -> QuietWindow | None:
        """Build a window from two ``HH:MM`` strings; ``None`` unless both are set."""
        if not start or not end:
            return None
        return cls(parse_time_of_day(start), parse_time_of_day(end))

    def contains(self, moment: datetime) -> bool:
        """Return whether the wall-clock time of ``moment`` falls inside the window."""
        minutes = moment.hour * 60 + moment.minute
        if self.start_minute <= self.end_minute:
            return self.start_minute <= minutes < self.end_minute
        return minutes >= self.start_minute or minutes < self.end_minute
