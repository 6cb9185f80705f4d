"""SQLite adapter — implements RuleSource and CommitSink over recurgen.data.db.

All sqlite-specific error handling lives here. Core modules never import
this directly; they depend on the port protocols.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date

from recurgen.data.db import RecurrenceRuleDB, TaskInstanceDB
from recurgen.data.models import Priority, RecurrenceRule, TaskInstance
from recurgen.ports.commit_sink import CommitConflictError
from recurgen.ports.rule_source import StorageError

logger = logging.getLogger(__name__)


class SQLiteTaskStore:
    """SQLite implementation of RuleSource and CommitSink."""

    def __init__(
        self,
        rule_db: RecurrenceRuleDB | None = None,
        task_db: TaskInstanceDB | None = None,
    ) -> None:
        self.rules = rule_db or RecurrenceRuleDB()
        self.tasks = task_db or TaskInstanceDB()

    async def list_active_recurrence_rules(
        self, owner_id: int | None = None
    ) -> list[RecurrenceRule]:
        try:
            return self.rules.list_rules(owner_id=owner_id, active_only=True)
        except sqlite3.Error as exc:
            logger.error("Failed to load active rules: %s", exc)
            raise StorageError(f"Failed to load rules: {exc}") from exc

    async def get_existing_instance_dates(
        self, source_rule_id: int, range_start: date, range_end: date
    ) -> list[date]:
        try:
            return self.tasks.existing_dates(source_rule_id, range_start, range_end)
        except sqlite3.Error as exc:
            logger.error("Failed to load instances of rule %d: %s", source_rule_id, exc)
            raise StorageError(f"Failed to load instances: {exc}") from exc

    async def get_priority_counts(
        self, owner_id: int, range_start: date, range_end: date
    ) -> dict[date, dict[Priority, int]]:
        try:
            return self.tasks.priority_counts(owner_id, range_start, range_end)
        except sqlite3.Error as exc:
            logger.error("Failed to count tasks for owner %d: %s", owner_id, exc)
            raise StorageError(f"Failed to count tasks: {exc}") from exc

    async def commit_instances(
        self, source_rule_id: int, instances: list[TaskInstance]
    ) -> list[str]:
        """Insert a rule's batch; rows that already exist are skipped.

        The fast path is one transaction for the batch. If a concurrent run
        got there first, the batch is rolled back and retried row by row.
        Returns the ids this call inserted.
        """
        if not instances:
            return []
        try:
            try:
                self.tasks.insert_instances(instances)
                inserted = [i.id for i in instances]
            except CommitConflictError as exc:
                logger.info(
                    "Rule %d: %s; retrying row by row", source_rule_id, exc,
                )
                inserted = []
                for instance in instances:
                    try:
                        self.tasks.insert_instance(instance)
                        inserted.append(instance.id)
                    except CommitConflictError:
                        logger.debug("Instance %s already exists, skipped", instance.id)
            if inserted:
                self.rules.mark_generated(source_rule_id)
        except sqlite3.Error as exc:
            logger.error("Commit failed for rule %d: %s", source_rule_id, exc)
            raise StorageError(f"Failed to commit instances: {exc}") from exc

        logger.info(
            "Rule %d: committed %d/%d instances", source_rule_id, len(inserted), len(instances),
        )
        return inserted
