"""
Recurgen — Rule management service.

Create, edit, pause/resume recurring templates, and override the priority
of a single task. Rule changes describe future generation only: instances
that already exist are never rewritten. A create or edit immediately
backfills the upcoming window so the change shows up without waiting for
the daily run.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date

from pydantic import ValidationError

from recurgen.adapters.sqlite_store import SQLiteTaskStore
from recurgen.core.generation_job import GenerationResult, backfill_for_rule
from recurgen.core.priority_enforcer import check_override
from recurgen.core.recurrence import InvalidRuleError, describe_rule
from recurgen.core.rule_input import (
    RecurrenceRuleInput,
    RecurrenceRuleUpdate,
    parse_rule_input,
)
from recurgen.data.models import Priority, RecurrenceRule, TaskInstance

logger = logging.getLogger(__name__)


class RuleNotFoundError(LookupError):
    """Raised when a rule or task id does not exist."""


class RuleService:
    """UI-agnostic operations on recurrence rules and their instances."""

    def __init__(self, store: SQLiteTaskStore | None = None, backfill: bool = True) -> None:
        self.store = store or SQLiteTaskStore()
        self.backfill = backfill
        self.last_backfill: GenerationResult | None = None

    def _get(self, rule_id: int) -> RecurrenceRule:
        rule = self.store.rules.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Recurring rule {rule_id} not found")
        return rule

    async def _backfill(self, rule: RecurrenceRule, today: date | None) -> None:
        if self.backfill and rule.is_active:
            self.last_backfill = await backfill_for_rule(self.store, rule, today=today)

    async def create_rule(
        self,
        owner_id: int,
        data: RecurrenceRuleInput | dict,
        today: date | None = None,
    ) -> RecurrenceRule:
        """Validate and store a new rule, then backfill its upcoming window.

        Raises:
            InvalidRuleError: if the input breaks a recurrence invariant.
        """
        if isinstance(data, dict):
            data = parse_rule_input(data)

        rule = self.store.rules.add_rule(owner_id=owner_id, **data.model_dump())
        logger.info("Created rule #%d '%s': %s", rule.id, rule.title, describe_rule(rule))
        await self._backfill(rule, today)
        return rule

    async def update_rule(
        self,
        rule_id: int,
        update: RecurrenceRuleUpdate | dict,
        today: date | None = None,
    ) -> RecurrenceRule:
        """Apply a partial update, re-validating the merged rule.

        Raises:
            RuleNotFoundError: if the rule does not exist.
            InvalidRuleError: if the merged rule breaks an invariant.
        """
        rule = self._get(rule_id)
        try:
            if isinstance(update, dict):
                update = RecurrenceRuleUpdate.model_validate(update)
            changes = update.model_dump(exclude_unset=True)
            is_active = changes.pop("is_active", None)

            merged = {
                "title": rule.title,
                "priority": rule.priority,
                "pattern": rule.pattern,
                "start_date": rule.start_date,
                "description": rule.description,
                "estimated_minutes": rule.estimated_minutes,
                "linked_goal_id": rule.linked_goal_id,
                "days_of_week": rule.days_of_week,
                "custom_interval_days": rule.custom_interval_days,
                "end_date": rule.end_date,
            }
            merged.update(changes)
            validated = RecurrenceRuleInput.model_validate(merged)
        except ValidationError as exc:
            raise InvalidRuleError(str(exc)) from exc

        rule = replace(rule, **validated.model_dump())
        if is_active is not None:
            rule.is_active = is_active
        self.store.rules.update_rule(rule)
        await self._backfill(rule, today)
        return rule

    def deactivate_rule(self, rule_id: int) -> bool:
        """Stop future generation. Past instances keep their source_rule_id."""
        self._get(rule_id)
        return self.store.rules.set_active(rule_id, False)

    async def reactivate_rule(self, rule_id: int, today: date | None = None) -> bool:
        """Resume a paused rule and backfill its upcoming window."""
        rule = self._get(rule_id)
        changed = self.store.rules.set_active(rule_id, True)
        if changed:
            rule.is_active = True
            await self._backfill(rule, today)
        return changed

    def list_rules(self, owner_id: int, active_only: bool = False) -> list[dict]:
        """Rules with their human-readable recurrence, newest last."""
        rules = self.store.rules.list_rules(owner_id=owner_id, active_only=active_only)
        return [
            {
                "id": r.id,
                "title": r.title,
                "priority": r.priority.value,
                "recurrence": describe_rule(r),
                "is_active": r.is_active,
                "last_generated_at": r.last_generated_at,
            }
            for r in rules
        ]

    def override_priority(self, task_id: str, new_priority: Priority) -> TaskInstance:
        """Manually move a task to another tier (e.g. "promote to MIT").

        Later generation runs count the task at its new tier.

        Raises:
            RuleNotFoundError: if the task does not exist.
            PriorityLimitError: if the day already has the maximum of that tier.
        """
        tasks = self.store.tasks
        task = tasks.get_instance(task_id)
        if task is None:
            raise RuleNotFoundError(f"Task {task_id} not found")
        if task.priority is new_priority:
            return task

        day = task.scheduled_date
        others = tasks.priority_counts(task.owner_id, day, day, exclude_id=task_id)
        check_override(others.get(day, {}), new_priority)

        tasks.set_priority(task_id, new_priority)
        task.priority = new_priority
        task.priority_overridden = True
        return task
