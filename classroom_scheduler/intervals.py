from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Protocol, TypeVar


class TimeSpan(Protocol):
    start: datetime
    end: datetime


SpanT = TypeVar("SpanT", bound=TimeSpan)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True when two time intervals share at least one instant.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    """
    return a_start < b_end and a_end > b_start


def duration(start: datetime, end: datetime) -> timedelta:
    return end - start


def shift(start: datetime, end: datetime, new_start: datetime) -> tuple[datetime, datetime]:
    """Move an interval to ``new_start`` keeping its length."""
    return new_start, new_start + duration(start, end)


def find_overlapping(start: datetime, end: datetime, spans: Iterable[SpanT]) -> list[SpanT]:
    return [span for span in spans if overlaps(start, end, span.start, span.end)]
