"""Tests for recurgen.core.generator — bounded expansion of rules."""

from datetime import date
from unittest.mock import patch

import pytest

from recurgen.core.calendar_utils import InvalidRangeError
from recurgen.core.generator import build_instance, effective_window, expand
from recurgen.data.models import Priority, RecurrencePattern, Weekday


def _days(*pairs):
    return {date(2024, m, d) for m, d in pairs}


class TestExpand:
    def test_weekly_mon_wed_fri(self, rule_factory):
        rule = rule_factory(
            pattern=RecurrencePattern.WEEKLY,
            days_of_week=(Weekday.MON, Weekday.WED, Weekday.FRI),
        )
        result = expand(rule, date(2024, 1, 1), date(2024, 1, 14))
        assert result == _days((1, 1), (1, 3), (1, 5), (1, 8), (1, 10), (1, 12))

    def test_custom_every_three_days(self, rule_factory):
        rule = rule_factory(pattern=RecurrencePattern.CUSTOM, custom_interval_days=3)
        result = expand(rule, date(2024, 1, 1), date(2024, 1, 10))
        assert result == _days((1, 1), (1, 4), (1, 7), (1, 10))

    def test_daily_respects_end_date(self, rule_factory):
        rule = rule_factory(end_date=date(2024, 1, 5))
        result = expand(rule, date(2024, 1, 1), date(2024, 1, 10))
        assert result == _days((1, 1), (1, 2), (1, 3), (1, 4), (1, 5))

    def test_custom_window_starting_after_anchor(self, rule_factory):
        rule = rule_factory(pattern=RecurrencePattern.CUSTOM, custom_interval_days=3)
        result = expand(rule, date(2024, 1, 5), date(2024, 1, 12))
        assert result == _days((1, 7), (1, 10))

    def test_weekdays_over_month_boundary(self, rule_factory):
        rule = rule_factory(pattern=RecurrencePattern.WEEKDAYS)
        result = expand(rule, date(2024, 1, 29), date(2024, 2, 4))
        assert result == _days((1, 29), (1, 30), (1, 31), (2, 1), (2, 2))

    def test_inverted_range_raises(self, rule_factory):
        with pytest.raises(InvalidRangeError):
            expand(rule_factory(), date(2024, 1, 10), date(2024, 1, 1))


class TestShortCircuit:
    def test_rule_starting_after_range_does_not_iterate(self, rule_factory):
        rule = rule_factory(start_date=date(2024, 3, 1))
        with patch("recurgen.core.generator.iterate_dates") as mock_iter:
            result = expand(rule, date(2024, 1, 1), date(2024, 1, 31))
        assert result == set()
        mock_iter.assert_not_called()

    def test_rule_ended_before_range_does_not_iterate(self, rule_factory):
        rule = rule_factory(end_date=date(2024, 1, 5))
        with patch("recurgen.core.generator.iterate_dates") as mock_iter:
            result = expand(rule, date(2024, 2, 1), date(2024, 2, 28))
        assert result == set()
        mock_iter.assert_not_called()

    def test_effective_window_clips_to_rule(self, rule_factory):
        rule = rule_factory(start_date=date(2024, 1, 5), end_date=date(2024, 1, 8))
        assert effective_window(rule, date(2024, 1, 1), date(2024, 1, 31)) == (
            date(2024, 1, 5), date(2024, 1, 8),
        )


class TestBuildInstance:
    def test_copies_rule_content(self, rule_factory):
        rule = rule_factory(
            id=12,
            priority=Priority.PRIMARY,
            description="Read the plan",
            estimated_minutes=20,
            linked_goal_id="wg-3",
        )
        instance = build_instance(rule, date(2024, 1, 9))
        assert instance.id == "rule12-20240109"
        assert instance.source_rule_id == 12
        assert instance.owner_id == rule.owner_id
        assert instance.priority is Priority.PRIMARY
        assert instance.estimated_minutes == 20
        assert instance.linked_goal_id == "wg-3"
        assert instance.completed is False
        assert instance.priority_downgraded is False

    def test_snapshot_not_live(self, rule_factory):
        rule = rule_factory()
        instance = build_instance(rule, date(2024, 1, 2))
        rule.title = "Renamed"
        assert instance.title == "Morning review"
