"""Rule source port — read side of the recurrence storage.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from recurgen.data.models import Priority, RecurrenceRule


class StorageError(Exception):
    """Raised when the storage layer is unavailable or a query fails."""


class RuleSource(Protocol):
    """Abstract rule/instance lookup interface used by the generation job."""

    async def list_active_recurrence_rules(
        self, owner_id: int | None = None
    ) -> list[RecurrenceRule]: ...

    async def get_existing_instance_dates(
        self, source_rule_id: int, range_start: date, range_end: date
    ) -> list[date]: ...

    async def get_priority_counts(
        self, owner_id: int, range_start: date, range_end: date
    ) -> dict[date, dict[Priority, int]]: ...
