"""Calendar utilities — pure date arithmetic on naive calendar dates.

Everything here works on `datetime.date` values only. Instants never enter
the picture, so DST shifts and time zones cannot move a date.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from recurgen.data.models import Weekday

_ONE_DAY = timedelta(days=1)


class InvalidRangeError(ValueError):
    """Raised when a date range ends before it starts."""


def _require_date(value: object, name: str) -> date:
    # datetime is a subclass of date, but carries a time component
    if isinstance(value, datetime) or not isinstance(value, date):
        raise TypeError(f"{name} must be a calendar date, got {type(value).__name__}")
    return value


def days_between(a: date, b: date) -> int:
    """Whole days from `a` to `b` (negative when b is before a)."""
    _require_date(a, "a")
    _require_date(b, "b")
    return (b - a).days


def weekday_of(d: date) -> Weekday:
    """Weekday token of a date, Monday=0 .. Sunday=6."""
    return Weekday(_require_date(d, "date").weekday())


@dataclass(frozen=True)
class DateRange:
    """Inclusive, restartable sequence of consecutive dates."""

    start: date
    end: date

    def __iter__(self):
        current = self.start
        while current <= self.end:
            yield current
            current += _ONE_DAY

    def __len__(self) -> int:
        return days_between(self.start, self.end) + 1

    def __contains__(self, item: object) -> bool:
        return isinstance(item, date) and self.start <= item <= self.end


def iterate_dates(start: date, end: date) -> DateRange:
    """Return the dates from `start` to `end`, both inclusive.

    Raises:
        InvalidRangeError: if end < start.
    """
    _require_date(start, "start")
    _require_date(end, "end")
    if end < start:
        raise InvalidRangeError(f"Range end {end} is before start {start}")
    return DateRange(start, end)


def intersect(
    a_start: date,
    a_end: date | None,
    b_start: date,
    b_end: date | None,
) -> tuple[date, date | None] | None:
    """Intersect two inclusive ranges; a None end means unbounded.

    Returns (start, end) of the overlap, or None if the ranges are disjoint.
    """
    start = max(a_start, b_start)
    if a_end is None:
        end = b_end
    elif b_end is None:
        end = a_end
    else:
        end = min(a_end, b_end)
    if end is not None and end < start:
        return None
    return start, end


def today_in(tz_name: str) -> date:
    """The calendar date it currently is in the given IANA time zone."""
    return datetime.now(ZoneInfo(tz_name)).date()
