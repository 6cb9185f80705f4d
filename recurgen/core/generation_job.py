"""
Recurgen — Generation Job.

Batch process that turns active recurrence rules into task instances for a
date window: load rules, expand them, drop dates that already have an
instance, resolve per-day priority collisions, then commit one batch per
rule.

A bad rule never aborts the batch: its error is recorded and the other
rules continue. Only storage unavailability fails the run, and because
every step is idempotent the caller's scheduler can simply retry.

This module is storage-agnostic: it depends on the RuleSource and
CommitSink protocols, not on SQLite.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from recurgen.core.calendar_utils import InvalidRangeError, today_in
from recurgen.core.generator import build_instance, expand
from recurgen.core.idempotency import dates_to_create
from recurgen.core.priority_enforcer import DayLedger, Downgrade, PriorityEnforcer
from recurgen.core.recurrence import describe_rule, validate_rule
from recurgen.ports.commit_sink import CommitConflictError
from recurgen.ports.rule_source import StorageError

if TYPE_CHECKING:
    from recurgen.data.models import RecurrenceRule, TaskInstance
    from recurgen.ports.commit_sink import CommitSink
    from recurgen.ports.rule_source import RuleSource

logger = logging.getLogger(__name__)


class JobState(Enum):
    IDLE = "idle"
    LOADING_RULES = "loading_rules"
    EXPANDING = "expanding"
    RECONCILING = "reconciling"
    COMMITTING = "committing"
    FAILED = "failed"


@dataclass
class RuleError:
    """A per-rule failure that was recorded instead of aborting the run."""

    rule_id: int
    error: str

    def to_dict(self) -> dict:
        return {"rule_id": self.rule_id, "error": self.error}


@dataclass
class GenerationResult:
    """Outcome of one run, for the UI card and the logs."""

    created: int = 0
    skipped: int = 0
    downgraded: list[Downgrade] = field(default_factory=list)
    per_rule_errors: list[RuleError] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "downgraded": [d.to_dict() for d in self.downgraded],
            "per_rule_errors": [e.to_dict() for e in self.per_rule_errors],
            "cancelled": self.cancelled,
        }


class GenerationFailedError(Exception):
    """The run hit an infrastructure failure; `result` holds what got done."""

    def __init__(self, message: str, result: GenerationResult) -> None:
        super().__init__(message)
        self.result = result


@dataclass
class _RulePlan:
    rule: RecurrenceRule
    candidates: set[date]
    instances: list[TaskInstance] = field(default_factory=list)
    downgrades: list[Downgrade] = field(default_factory=list)


# Commits for the same rule are serialized across concurrent runs in-process;
# the storage unique index covers everything else. Locks are per event loop
# and an entry lives only while some run holds or awaits it.
_RULE_LOCKS: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


@asynccontextmanager
async def _rule_lock(rule_id: int):
    locks = _RULE_LOCKS.setdefault(asyncio.get_running_loop(), {})
    entry = locks.get(rule_id)
    if entry is None:
        entry = locks[rule_id] = [asyncio.Lock(), 0]
    entry[1] += 1
    try:
        async with entry[0]:
            yield
    finally:
        entry[1] -= 1
        if entry[1] == 0:
            del locks[rule_id]


class GenerationJob:
    """One generation pass over a date window.

    States: IDLE -> LOADING_RULES -> EXPANDING -> RECONCILING -> COMMITTING
    -> IDLE, with FAILED reachable from any step.
    """

    def __init__(self, source: RuleSource, sink: CommitSink) -> None:
        self.source = source
        self.sink = sink
        self.state = JobState.IDLE
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop the run at the next rule boundary."""
        self._cancel_requested = True

    def _transition(self, state: JobState) -> None:
        logger.debug("Generation job: %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(
        self,
        range_start: date,
        range_end: date,
        owner_id: int | None = None,
    ) -> GenerationResult:
        """Generate missing instances in [range_start, range_end].

        Args:
            range_start: First calendar date of the window (inclusive).
            range_end: Last calendar date of the window (inclusive).
            owner_id: Restrict to one user's rules; None runs for everyone.

        Raises:
            InvalidRangeError: if range_end < range_start.
            GenerationFailedError: if storage fails while loading or committing.
        """
        if range_end < range_start:
            raise InvalidRangeError(f"Range end {range_end} is before start {range_start}")

        result = GenerationResult()
        self._cancel_requested = False
        logger.info(
            "Generation run for %s: %s..%s",
            "all owners" if owner_id is None else f"owner {owner_id}",
            range_start, range_end,
        )

        try:
            self._transition(JobState.LOADING_RULES)
            rules = await self.source.list_active_recurrence_rules(owner_id)
            rules = sorted(
                (r for r in rules if r.is_active), key=lambda r: (r.created_at, r.id),
            )
            if not rules:
                logger.info("No active rules, nothing to generate")
                self._transition(JobState.IDLE)
                return result

            self._transition(JobState.EXPANDING)
            plans = self._expand_all(rules, range_start, range_end, result)

            self._transition(JobState.RECONCILING)
            await self._reconcile(plans, range_start, range_end, result)

            self._transition(JobState.COMMITTING)
            await self._commit(plans, result)
        except StorageError as exc:
            self._transition(JobState.FAILED)
            logger.error("Generation run failed: %s", exc)
            raise GenerationFailedError(f"Generation run failed: {exc}", result) from exc
        except Exception as exc:
            step = self.state
            self._transition(JobState.FAILED)
            logger.exception("Generation run aborted while %s", step.value)
            raise GenerationFailedError(f"Generation run aborted: {exc}", result) from exc

        self._transition(JobState.IDLE)
        logger.info(
            "Generation done: %d created, %d skipped, %d downgraded, %d rule errors%s",
            result.created, result.skipped, len(result.downgraded),
            len(result.per_rule_errors), " (cancelled)" if result.cancelled else "",
        )
        return result

    def _expand_all(
        self,
        rules: list[RecurrenceRule],
        range_start: date,
        range_end: date,
        result: GenerationResult,
    ) -> list[_RulePlan]:
        plans: list[_RulePlan] = []
        for rule in rules:
            try:
                validate_rule(rule)
                candidates = expand(rule, range_start, range_end)
            except Exception as exc:
                logger.warning("Rule %s skipped: %s", rule.id, exc)
                result.per_rule_errors.append(RuleError(rule.id, str(exc)))
                continue
            if candidates:
                logger.debug(
                    "Rule %s (%s): %d candidate dates", rule.id, describe_rule(rule), len(candidates),
                )
                plans.append(_RulePlan(rule=rule, candidates=candidates))
        return plans

    async def _reconcile(
        self,
        plans: list[_RulePlan],
        range_start: date,
        range_end: date,
        result: GenerationResult,
    ) -> None:
        # One existing-dates lookup per rule, run concurrently
        existing_per_rule = await asyncio.gather(*(
            self.source.get_existing_instance_dates(p.rule.id, range_start, range_end)
            for p in plans
        ))

        ledger = DayLedger()
        owners = sorted({p.rule.owner_id for p in plans})
        counts_per_owner = await asyncio.gather(*(
            self.source.get_priority_counts(owner, range_start, range_end)
            for owner in owners
        ))
        for owner, counts in zip(owners, counts_per_owner):
            ledger.load(owner, counts)

        enforcer = PriorityEnforcer(ledger)
        failed: list[_RulePlan] = []
        # Creation order, oldest first: earlier rules win priority collisions
        for plan, existing in zip(plans, existing_per_rule):
            try:
                missing = dates_to_create(plan.candidates, existing)
                result.skipped += len(plan.candidates) - len(missing)
                for day in missing:
                    instance = build_instance(plan.rule, day)
                    downgrade = enforcer.admit(instance)
                    if downgrade is not None:
                        plan.downgrades.append(downgrade)
                    plan.instances.append(instance)
            except Exception as exc:
                logger.warning("Rule %s skipped during reconciliation: %s", plan.rule.id, exc)
                result.per_rule_errors.append(RuleError(plan.rule.id, str(exc)))
                failed.append(plan)
        for plan in failed:
            plans.remove(plan)

    async def _commit(self, plans: list[_RulePlan], result: GenerationResult) -> None:
        for plan in plans:
            if self._cancel_requested:
                logger.info("Generation cancelled before rule %s", plan.rule.id)
                result.cancelled = True
                return
            if not plan.instances:
                continue

            rule_id = plan.rule.id
            async with _rule_lock(rule_id):
                try:
                    inserted_ids = set(await self.sink.commit_instances(rule_id, plan.instances))
                except CommitConflictError as exc:
                    logger.info("Rule %s: instances already committed elsewhere (%s)", rule_id, exc)
                    inserted_ids = set()
                except StorageError:
                    raise
                except Exception as exc:
                    logger.warning("Rule %s commit failed: %s", rule_id, exc)
                    result.per_rule_errors.append(RuleError(rule_id, str(exc)))
                    continue

            result.created += len(inserted_ids)
            result.skipped += len(plan.instances) - len(inserted_ids)
            # Rows a racing run inserted are reported by that run
            result.downgraded.extend(
                d for d in plan.downgrades if d.instance_id in inserted_ids
            )


async def run_daily(
    store,
    owner_id: int | None = None,
    today: date | None = None,
) -> GenerationResult:
    """Periodic trigger: generate today through GENERATION_WINDOW_DAYS ahead.

    `store` implements both RuleSource and CommitSink.
    """
    from recurgen.config import settings

    start = today or today_in(settings.TIMEZONE)
    end = start + timedelta(days=settings.GENERATION_WINDOW_DAYS - 1)
    return await GenerationJob(store, store).run(start, end, owner_id=owner_id)


async def backfill_for_rule(
    store,
    rule: RecurrenceRule,
    today: date | None = None,
) -> GenerationResult:
    """On-demand trigger after a rule is created or edited.

    Runs the owner's rules over the next BACKFILL_DAYS so the new rule's
    instances appear immediately, in the same deterministic order the
    daily run would use.
    """
    from recurgen.config import settings

    start = today or today_in(settings.TIMEZONE)
    end = start + timedelta(days=settings.BACKFILL_DAYS - 1)
    logger.info("Backfilling rule %s for owner %s: %s..%s", rule.id, rule.owner_id, start, end)
    return await GenerationJob(store, store).run(start, end, owner_id=rule.owner_id)
