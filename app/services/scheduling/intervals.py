# app/services/scheduling/intervals.py
"""
Half-open time intervals [start, end) and the set operations the
availability code is built on. Everything here is pure.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List

from app.services.scheduling.exceptions import InvalidInterval


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidInterval(f"Interval start {self.start.isoformat()} must be before end {self.end.isoformat()}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def padded(self, before: timedelta = timedelta(0), after: timedelta = timedelta(0)) -> "Interval":
        """Widen the interval, e.g. to apply appointment buffers."""
        return Interval(self.start - before, self.end + after)

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    """Touching endpoints do not overlap."""
    return not (a.end <= b.start or b.end <= a.start)


def contains(interval: Interval, instant: datetime) -> bool:
    return interval.start <= instant < interval.end


def merge(intervals: Iterable[Interval]) -> List[Interval]:
    """Sorted, non-overlapping cover of the input. Adjacent intervals are joined."""
    ordered = sorted(intervals)
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


def subtract(base: Iterable[Interval], busy: Iterable[Interval]) -> List[Interval]:
    """Parts of `base` not covered by any interval in `busy`."""
    blocked = merge(busy)
    free: List[Interval] = []

    for window in merge(base):
        cursor = window.start
        for block in blocked:
            if block.end <= cursor:
                continue
            if block.start >= window.end:
                break
            if block.start > cursor:
                free.append(Interval(cursor, block.start))
            cursor = max(cursor, block.end)
            if cursor >= window.end:
                break
        if cursor < window.end:
            free.append(Interval(cursor, window.end))

    return free
