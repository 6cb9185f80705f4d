"""
Recurgen — Data Models.

Recurrence rules describe *future* generation; task instances are the
date-bound snapshots produced from them. A later edit to a rule never
touches instances that already exist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class Priority(Enum):
    MIT = "MIT"
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


class RecurrencePattern(Enum):
    DAILY = "DAILY"
    WEEKDAYS = "WEEKDAYS"
    WEEKLY = "WEEKLY"
    CUSTOM = "CUSTOM"


class Weekday(Enum):
    """Weekday tokens, numbered Monday=0 .. Sunday=6 like date.weekday()."""

    MON = 0
    TUE = 1
    WED = 2
    THU = 3
    FRI = 4
    SAT = 5
    SUN = 6


# Max tasks of each tier per calendar day (None = uncapped)
PRIORITY_LIMITS: dict[Priority, int | None] = {
    Priority.MIT: 1,
    Priority.PRIMARY: 3,
    Priority.SECONDARY: None,
}


@dataclass
class RecurrenceRule:
    """A user-defined recurring task template.

    Rules are never hard-deleted: deactivation (is_active=False) stops
    future generation while already generated instances keep a valid
    source_rule_id.
    """

    id: int
    owner_id: int
    title: str
    priority: Priority
    pattern: RecurrencePattern
    start_date: date                      # inclusive; day 0 for CUSTOM
    description: str | None = None
    estimated_minutes: int | None = None
    linked_goal_id: str | None = None     # weak reference, not enforced
    days_of_week: tuple = ()              # Weekday members; WEEKLY only
    custom_interval_days: int | None = None  # CUSTOM only
    end_date: date | None = None          # inclusive
    is_active: bool = field(default=True)
    created_at: str = ""                  # ISO timestamp, defines batch order
    last_generated_at: str | None = None  # ISO timestamp of last insert


@dataclass
class TaskInstance:
    """A concrete task materialized for one calendar date."""

    id: str
    owner_id: int
    source_rule_id: int | None            # None for manually created tasks
    scheduled_date: date
    title: str
    priority: Priority
    description: str | None = None
    estimated_minutes: int | None = None
    linked_goal_id: str | None = None
    completed: bool = False
    priority_downgraded: bool = False
    original_priority: Priority | None = None
    priority_overridden: bool = False


def instance_id_for(rule_id: int, scheduled_date: date) -> str:
    """Deterministic id of the instance a rule produces on a date."""
    return f"rule{rule_id}-{scheduled_date:%Y%m%d}"
