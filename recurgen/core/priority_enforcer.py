"""Priority constraint enforcer — per-day MIT uniqueness and PRIMARY cap.

Generated candidates are never dropped for exceeding a tier cap. They are
committed one tier lower, flagged with `priority_downgraded`, and reported
as a Downgrade so the surrounding application can show it.

No I/O: the job loads persisted counts and feeds them in.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from recurgen.data.models import PRIORITY_LIMITS, Priority, TaskInstance

logger = logging.getLogger(__name__)

# Tier a capped candidate falls back to
_FALLBACK: dict[Priority, Priority] = {
    Priority.MIT: Priority.PRIMARY,
    Priority.PRIMARY: Priority.SECONDARY,
}


class PriorityLimitError(ValueError):
    """Raised when a manual priority change would exceed a per-day cap."""


@dataclass
class Downgrade:
    """A recorded, user-visible priority resolution (not a failure)."""

    instance_id: str
    scheduled_date: date
    from_priority: Priority
    to_priority: Priority

    def to_dict(self) -> dict:
        return {
            "instance_id": self.instance_id,
            "date": self.scheduled_date.isoformat(),
            "from": self.from_priority.value,
            "to": self.to_priority.value,
        }


class DayLedger:
    """Per-(owner, date) tier counts: persisted tasks plus queued candidates."""

    def __init__(self) -> None:
        self._counts: dict[tuple[int, date], dict[Priority, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._loaded_owners: set[int] = set()

    def is_loaded(self, owner_id: int) -> bool:
        return owner_id in self._loaded_owners

    def load(self, owner_id: int, counts: dict[date, dict[Priority, int]]) -> None:
        """Seed the ledger with an owner's already persisted tasks."""
        for day, per_tier in counts.items():
            for priority, n in per_tier.items():
                self._counts[(owner_id, day)][priority] += n
        self._loaded_owners.add(owner_id)

    def count(self, owner_id: int, day: date, priority: Priority) -> int:
        return self._counts[(owner_id, day)][priority]

    def add(self, owner_id: int, day: date, priority: Priority) -> None:
        self._counts[(owner_id, day)][priority] += 1

    def has_room(self, owner_id: int, day: date, priority: Priority) -> bool:
        limit = PRIORITY_LIMITS[priority]
        return limit is None or self.count(owner_id, day, priority) < limit


class PriorityEnforcer:
    """Admits candidates one at a time, in deterministic batch order.

    Callers must feed candidates oldest rule first, then by date, so that
    the earliest-created rule keeps its tier on a collision.
    """

    def __init__(self, ledger: DayLedger | None = None) -> None:
        self.ledger = ledger or DayLedger()

    def admit(self, instance: TaskInstance) -> Downgrade | None:
        """Queue an instance, lowering its tier if its day is full.

        Mutates `instance` in place when downgraded. Returns the Downgrade
        record, or None if the instance kept its priority.
        """
        owner, day = instance.owner_id, instance.scheduled_date
        requested = instance.priority
        granted = requested
        while not self.ledger.has_room(owner, day, granted):
            granted = _FALLBACK[granted]

        self.ledger.add(owner, day, granted)
        if granted is requested:
            return None

        instance.priority = granted
        instance.priority_downgraded = True
        instance.original_priority = requested
        logger.warning(
            "Priority conflict on %s for owner %s: '%s' (rule %s) downgraded %s -> %s",
            day, owner, instance.title, instance.source_rule_id,
            requested.value, granted.value,
        )
        return Downgrade(
            instance_id=instance.id,
            scheduled_date=day,
            from_priority=requested,
            to_priority=granted,
        )


def check_override(current_counts: dict[Priority, int], new_priority: Priority) -> None:
    """Validate a manual priority change against the day's current counts.

    `current_counts` must exclude the task being changed.

    Raises:
        PriorityLimitError: if the target tier is already at its cap.
    """
    limit = PRIORITY_LIMITS[new_priority]
    if limit is not None and current_counts.get(new_priority, 0) >= limit:
        raise PriorityLimitError(
            f"Maximum {limit} {new_priority.value} task(s) allowed per day"
        )
