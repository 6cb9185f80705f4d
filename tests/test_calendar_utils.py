"""Tests for recurgen.core.calendar_utils — naive date arithmetic."""

from datetime import date, datetime
from unittest.mock import patch

import pytest

from recurgen.core.calendar_utils import (
    DateRange,
    InvalidRangeError,
    days_between,
    intersect,
    iterate_dates,
    today_in,
    weekday_of,
)
from recurgen.data.models import Weekday


class TestDaysBetween:
    def test_forward(self):
        assert days_between(date(2024, 1, 1), date(2024, 1, 10)) == 9

    def test_backward_is_negative(self):
        assert days_between(date(2024, 1, 10), date(2024, 1, 1)) == -9

    def test_same_day(self):
        assert days_between(date(2024, 3, 5), date(2024, 3, 5)) == 0

    def test_across_leap_day(self):
        assert days_between(date(2024, 2, 28), date(2024, 3, 1)) == 2

    def test_across_dst_change(self):
        # Europe/US DST switches in late March; dates carry no clock time
        assert days_between(date(2024, 3, 30), date(2024, 4, 1)) == 2

    def test_rejects_datetime(self):
        with pytest.raises(TypeError):
            days_between(datetime(2024, 1, 1, 12), date(2024, 1, 2))


class TestWeekdayOf:
    def test_monday(self):
        assert weekday_of(date(2024, 1, 1)) is Weekday.MON

    def test_sunday(self):
        assert weekday_of(date(2024, 1, 7)) is Weekday.SUN

    def test_numbering_is_monday_zero(self):
        assert weekday_of(date(2024, 1, 3)).value == 2  # Wednesday


class TestIterateDates:
    def test_inclusive_both_ends(self):
        dates = list(iterate_dates(date(2024, 1, 30), date(2024, 2, 2)))
        assert dates == [
            date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1), date(2024, 2, 2),
        ]

    def test_single_day(self):
        assert list(iterate_dates(date(2024, 5, 5), date(2024, 5, 5))) == [date(2024, 5, 5)]

    def test_restartable(self):
        rng = iterate_dates(date(2024, 1, 1), date(2024, 1, 3))
        assert list(rng) == list(rng)
        assert len(rng) == 3

    def test_year_boundary(self):
        dates = list(iterate_dates(date(2023, 12, 31), date(2024, 1, 1)))
        assert dates == [date(2023, 12, 31), date(2024, 1, 1)]

    def test_inverted_range_raises(self):
        with pytest.raises(InvalidRangeError):
            iterate_dates(date(2024, 1, 2), date(2024, 1, 1))

    def test_contains(self):
        rng = DateRange(date(2024, 1, 1), date(2024, 1, 31))
        assert date(2024, 1, 15) in rng
        assert date(2024, 2, 1) not in rng


class TestIntersect:
    def test_overlap(self):
        assert intersect(date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 5), None) == (
            date(2024, 1, 5), date(2024, 1, 10),
        )

    def test_disjoint(self):
        assert intersect(date(2024, 1, 1), date(2024, 1, 10), date(2024, 2, 1), None) is None

    def test_both_bounded_takes_earliest_end(self):
        assert intersect(
            date(2024, 1, 1), date(2024, 1, 10), date(2023, 12, 1), date(2024, 1, 5),
        ) == (date(2024, 1, 1), date(2024, 1, 5))

    def test_touching_single_day(self):
        assert intersect(
            date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 10), None,
        ) == (date(2024, 1, 10), date(2024, 1, 10))


class TestTodayIn:
    def test_uses_zone_date(self):
        fixed = datetime(2024, 1, 1, 23, 30)
        with patch("recurgen.core.calendar_utils.datetime") as mock_dt:
            mock_dt.now.return_value = fixed
            assert today_in("Asia/Tokyo") == date(2024, 1, 1)
            mock_dt.now.assert_called_once()
