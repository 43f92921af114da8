"""Half-open time window helpers.

Bookings are stored as a ``YYYY-MM-DD`` date plus an ``HH:MM`` (or ``HH:MM:SS``)
start; a window is ``[start, start + duration)`` in minutes from midnight.
"""
from dataclasses import dataclass


DEFAULT_DURATION_MINUTES = 60


def to_minutes(hhmm: str) -> int:
    parts = (hhmm or "").strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"invalid time: {hhmm!r}")
    hh, mm = int(parts[0]), int(parts[1])
    if not (0 <= hh < 24 and 0 <= mm < 60):
        raise ValueError(f"invalid time: {hhmm!r}")
    return hh * 60 + mm


def format_minutes(total: int) -> str:
    # windows may run past midnight; wrap for display only
    hh, mm = divmod(total % 1440, 60)
    return f"{hh:02d}:{mm:02d}"


def normalize_time(hhmm: str) -> str:
    return format_minutes(to_minutes(hhmm))


@dataclass(frozen=True)
class TimeWindow:
    start: int
    end: int

    @classmethod
    def from_start(cls, start_hhmm: str, duration_minutes: int) -> "TimeWindow":
        if duration_minutes <= 0:
            raise ValueError("duration must be > 0")
        s = to_minutes(start_hhmm)
        return cls(start=s, end=s + duration_minutes)

    def overlaps(self, other: "TimeWindow") -> bool:
        return windows_overlap(self.start, self.end, other.start, other.end)

    @property
    def label(self) -> str:
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


def windows_overlap(s1: int, e1: int, s2: int, e2: int) -> bool:
    """[s1,e1) and [s2,e2) intersect; touching endpoints do not."""
    return s1 < e2 and s2 < e1
