"""Instance generator — expands a rule over a bounded date window.

The generator is only ever asked about a finite window (today through N
days ahead, or a backfill window). It never enumerates an infinite future,
so a failed run can simply be repeated without a resumable cursor.
"""

from __future__ import annotations

import logging
from datetime import date

from recurgen.core.calendar_utils import InvalidRangeError, intersect, iterate_dates
from recurgen.core.recurrence import fires
from recurgen.data.models import RecurrenceRule, TaskInstance, instance_id_for

logger = logging.getLogger(__name__)


def effective_window(
    rule: RecurrenceRule, range_start: date, range_end: date
) -> tuple[date, date] | None:
    """Overlap of the requested range and the rule's validity window."""
    if range_end < range_start:
        raise InvalidRangeError(f"Range end {range_end} is before start {range_start}")
    window = intersect(range_start, range_end, rule.start_date, rule.end_date)
    if window is None:
        return None
    # The request range is bounded, so the overlap always has an end
    return window[0], window[1]


def expand(rule: RecurrenceRule, range_start: date, range_end: date) -> set[date]:
    """Dates in [range_start, range_end] on which `rule` fires."""
    window = effective_window(rule, range_start, range_end)
    if window is None:
        logger.debug(
            "Rule %s: no overlap with %s..%s, skipping", rule.id, range_start, range_end,
        )
        return set()

    return {d for d in iterate_dates(*window) if fires(rule, d)}


def build_instance(rule: RecurrenceRule, scheduled_date: date) -> TaskInstance:
    """Snapshot the rule's task content onto a new instance for a date."""
    return TaskInstance(
        id=instance_id_for(rule.id, scheduled_date),
        owner_id=rule.owner_id,
        source_rule_id=rule.id,
        scheduled_date=scheduled_date,
        title=rule.title,
        priority=rule.priority,
        description=rule.description,
        estimated_minutes=rule.estimated_minutes,
        linked_goal_id=rule.linked_goal_id,
    )
