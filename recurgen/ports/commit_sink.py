"""Commit sink port — write side of the recurrence storage.

Implementations must enforce uniqueness of (source_rule_id, scheduled_date)
at the storage layer; the idempotency guard only avoids needless inserts.
"""

from __future__ import annotations

from typing import Protocol

from recurgen.data.models import TaskInstance
from recurgen.ports.rule_source import StorageError


class CommitConflictError(StorageError):
    """Raised when an insert loses a race on the (rule, date) unique index."""


class CommitSink(Protocol):
    """Abstract instance persistence interface used by the generation job."""

    async def commit_instances(
        self, source_rule_id: int, instances: list[TaskInstance]
    ) -> list[str]:
        """Insert a rule's batch and return the ids actually inserted.

        The inserted count is the length of the returned list. Rows that
        already exist are skipped, not reported.
        """
        ...
