"""
Time parsing and interval arithmetic for scheduling

All intervals are half-open: [start, end). Two intervals that only share
an endpoint do not overlap.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, NamedTuple, Optional

import pytz

from ...shared.validators import parse_hhmm


class Interval(NamedTuple):
    start: datetime
    end: datetime

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> "Interval":
        return cls(start, start + timedelta(minutes=duration_minutes))

    def overlaps(self, other: "Interval") -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def intervals_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open intersection test: touching endpoints do not count."""
    return start1 < end2 and start2 < end1


def utcnow() -> datetime:
    """Naive UTC now, matching how expiry instants are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now(utc_now: datetime, tz_name: Optional[str]) -> datetime:
    """
    Convert a naive UTC instant to the tenant's naive wall clock.

    Unknown timezones fall back to UTC.
    """
    if not tz_name or tz_name == "UTC":
        return utc_now
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        return utc_now
    return pytz.utc.localize(utc_now).astimezone(tz).replace(tzinfo=None)


def combine(target_date: date, value) -> datetime:
    """Combine a date with an HH:MM string or time object"""
    if not isinstance(value, time):
        value = parse_hhmm(value)
    return datetime.combine(target_date, value)


def day_bounds(target_date: date) -> Interval:
    start = datetime.combine(target_date, time.min)
    return Interval(start, start + timedelta(days=1))


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Union overlapping or adjacent intervals, sorted by start"""
    ordered = sorted(intervals, key=lambda x: x.start)
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def subtract_interval(interval: Interval, block: Interval) -> List[Interval]:
    """
    Remove a block from an interval.

    Returns 0, 1 or 2 intervals.
    """
    if not interval.overlaps(block):
        return [interval]

    pieces = []
    if block.start > interval.start:
        pieces.append(Interval(interval.start, block.start))
    if block.end < interval.end:
        pieces.append(Interval(block.end, interval.end))
    return pieces


def subtract_all(intervals: Iterable[Interval], blocks: Iterable[Interval]) -> List[Interval]:
    remaining = list(intervals)
    for block in blocks:
        next_remaining = []
        for interval in remaining:
            next_remaining.extend(subtract_interval(interval, block))
        remaining = next_remaining
    return sorted(remaining, key=lambda x: x.start)


def generate_candidate_starts(
    window: Interval, duration_minutes: int, step_minutes: int
) -> List[datetime]:
    """
    Candidate start times at step granularity such that the whole
    appointment fits inside the window.
    """
    if step_minutes <= 0:
        raise ValueError("Slot interval must be positive")

    candidates = []
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    current = window.start
    while current + duration <= window.end:
        candidates.append(current)
        current += step
    return candidates


def is_aligned(start: datetime, duration_minutes: int, granularity_minutes: int) -> bool:
    minute_of_day = start.hour * 60 + start.minute
    return (
        start.second == 0
        and start.microsecond == 0
        and minute_of_day % granularity_minutes == 0
        and duration_minutes % granularity_minutes == 0
    )


def claim_cells(start: datetime, duration_minutes: int, granularity_minutes: int) -> List[datetime]:
    """
    Cell start instants covered by [start, start + duration).

    Raises:
        ValueError: If start or duration do not align to the granularity
    """
    if duration_minutes <= 0:
        raise ValueError("Duration must be positive")
    if not is_aligned(start, duration_minutes, granularity_minutes):
        raise ValueError(
            f"Start {start:%H:%M} and duration {duration_minutes}m must align "
            f"to {granularity_minutes}-minute cells"
        )
    step = timedelta(minutes=granularity_minutes)
    return [start + step * i for i in range(duration_minutes // granularity_minutes)]
