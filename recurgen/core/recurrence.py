"""
Recurgen — Recurrence rules and pattern evaluation.

`fires(rule, date)` answers whether a rule produces a task on a date.
It is a pure function: no persisted cursor, no "last generated" state,
so the same (rule, date) pair always yields the same answer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from recurgen.core.calendar_utils import days_between, weekday_of
from recurgen.data.models import (
    Priority,
    RecurrencePattern,
    RecurrenceRule,
    Weekday,
)

logger = logging.getLogger(__name__)

_WORKWEEK = frozenset({Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU, Weekday.FRI})


class InvalidRuleError(ValueError):
    """Raised when a rule violates its data-model invariants."""


def parse_weekdays(tokens: Iterable[str | Weekday]) -> tuple[Weekday, ...]:
    """Convert tokens like "MON" into Weekday members, sorted Mon..Sun.

    Raises InvalidRuleError on an unknown token.
    """
    days: set[Weekday] = set()
    for token in tokens:
        if isinstance(token, Weekday):
            days.add(token)
            continue
        try:
            days.add(Weekday[str(token).strip().upper()])
        except KeyError:
            raise InvalidRuleError(f"Unknown weekday token: {token!r}") from None
    return tuple(sorted(days, key=lambda d: d.value))


def validate_rule(rule: RecurrenceRule) -> None:
    """Check a stored rule against the recurrence invariants.

    Raises:
        InvalidRuleError: describing the first violated invariant.
    """
    if not isinstance(rule.priority, Priority):
        raise InvalidRuleError(f"Rule {rule.id}: invalid priority {rule.priority!r}")
    if not isinstance(rule.pattern, RecurrencePattern):
        raise InvalidRuleError(f"Rule {rule.id}: invalid pattern {rule.pattern!r}")
    if not isinstance(rule.start_date, date):
        raise InvalidRuleError(f"Rule {rule.id}: start_date is required, got {rule.start_date!r}")
    if rule.end_date is not None and not isinstance(rule.end_date, date):
        raise InvalidRuleError(f"Rule {rule.id}: corrupt end_date {rule.end_date!r}")
    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise InvalidRuleError(
            f"Rule {rule.id}: end_date {rule.end_date} is before start_date {rule.start_date}"
        )
    if rule.estimated_minutes is not None and rule.estimated_minutes < 1:
        raise InvalidRuleError(f"Rule {rule.id}: estimated_minutes must be positive")

    if rule.pattern is RecurrencePattern.WEEKLY:
        if not rule.days_of_week:
            raise InvalidRuleError(f"Rule {rule.id}: WEEKLY needs at least one day of week")
        bad = [d for d in rule.days_of_week if not isinstance(d, Weekday)]
        if bad:
            raise InvalidRuleError(f"Rule {rule.id}: corrupt days_of_week values {bad!r}")

    if rule.pattern is RecurrencePattern.CUSTOM:
        interval = rule.custom_interval_days
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise InvalidRuleError(
                f"Rule {rule.id}: CUSTOM needs custom_interval_days >= 1, got {interval!r}"
            )


def in_validity_window(rule: RecurrenceRule, d: date) -> bool:
    """True if d falls within [start_date, end_date] (end optional)."""
    if d < rule.start_date:
        return False
    return rule.end_date is None or d <= rule.end_date


def fires(rule: RecurrenceRule, d: date) -> bool:
    """Does `rule` produce a task on date `d`?"""
    if not in_validity_window(rule, d):
        return False

    pattern = rule.pattern
    if pattern is RecurrencePattern.DAILY:
        return True
    if pattern is RecurrencePattern.WEEKDAYS:
        return weekday_of(d) in _WORKWEEK
    if pattern is RecurrencePattern.WEEKLY:
        return weekday_of(d) in rule.days_of_week
    if pattern is RecurrencePattern.CUSTOM:
        offset = days_between(rule.start_date, d)
        return offset >= 0 and offset % rule.custom_interval_days == 0

    logger.warning("Rule %s has unsupported pattern %r", rule.id, pattern)
    return False


def format_recurrence_pattern(
    pattern: RecurrencePattern,
    days_of_week: Iterable[Weekday] | None = None,
    custom_interval_days: int | None = None,
) -> str:
    """Human-readable description of a recurrence, e.g. "Weekly: MON, WED"."""
    if pattern is RecurrencePattern.DAILY:
        return "Every day"
    if pattern is RecurrencePattern.WEEKDAYS:
        return "Weekdays (Mon-Fri)"
    if pattern is RecurrencePattern.WEEKLY:
        days = [d.name for d in days_of_week or () if isinstance(d, Weekday)]
        return f"Weekly: {', '.join(days)}" if days else "Weekly"
    if pattern is RecurrencePattern.CUSTOM:
        if custom_interval_days:
            if custom_interval_days == 1:
                return "Every day"
            return f"Every {custom_interval_days} days"
        return "Custom"
    return str(pattern)


def describe_rule(rule: RecurrenceRule) -> str:
    """format_recurrence_pattern applied to a rule."""
    return format_recurrence_pattern(
        rule.pattern, rule.days_of_week, rule.custom_interval_days,
    )
