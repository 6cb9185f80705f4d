"""
Recurgen — Recurrence Database.

Rules and generated task instances persist in SQLite. The unique index on
task_instances(source_rule_id, scheduled_date) is the final guarantee that
a rule never produces two tasks for the same day, even when two generation
runs race.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime
from enum import Enum
from pathlib import Path

from recurgen.data.models import (
    Priority,
    RecurrencePattern,
    RecurrenceRule,
    TaskInstance,
    Weekday,
)
from recurgen.ports.commit_sink import CommitConflictError

logger = logging.getLogger(__name__)


def _enum_or_raw(enum_cls: type[Enum], value: str | None):
    """Parse a stored enum value, keeping corrupt values for validation to reject."""
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _weekday_or_raw(token: object):
    if isinstance(token, str) and token in Weekday.__members__:
        return Weekday[token]
    return token


def _date_or_raw(value: str | None):
    """Parse a stored ISO date, keeping corrupt values for validation to reject."""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return value


def _days_or_raw(value: str | None) -> tuple:
    """Decode the stored days_of_week JSON list.

    Anything that is not a JSON list comes back as a single raw token, so
    the rule is rejected by validation instead of breaking the whole load.
    """
    if not value:
        return ()
    try:
        tokens = json.loads(value)
    except ValueError:
        return (value,)
    if not isinstance(tokens, list):
        return (value,)
    return tuple(_weekday_or_raw(t) for t in tokens)


class _SQLiteDB:
    """Shared connection handling for the recurgen tables."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from recurgen.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class RecurrenceRuleDB(_SQLiteDB):
    """SQLite-backed storage for recurrence rules."""

    def _init_db(self) -> None:
        """Create the rules table if it doesn't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recurrence_rules (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id             INTEGER NOT NULL,
                    title                TEXT    NOT NULL,
                    description          TEXT,
                    priority             TEXT    NOT NULL,
                    estimated_minutes    INTEGER,
                    linked_goal_id       TEXT,
                    pattern              TEXT    NOT NULL,
                    days_of_week         TEXT,
                    custom_interval_days INTEGER,
                    start_date           TEXT    NOT NULL,
                    end_date             TEXT,
                    is_active            INTEGER NOT NULL DEFAULT 1,
                    created_at           TEXT    NOT NULL
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(recurrence_rules)").fetchall()
            }
            if "last_generated_at" not in existing_cols:
                conn.execute(
                    "ALTER TABLE recurrence_rules ADD COLUMN last_generated_at TEXT"
                )
        logger.debug("Recurrence rules table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> RecurrenceRule:
        return RecurrenceRule(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            description=row["description"],
            priority=_enum_or_raw(Priority, row["priority"]),
            estimated_minutes=row["estimated_minutes"],
            linked_goal_id=row["linked_goal_id"],
            pattern=_enum_or_raw(RecurrencePattern, row["pattern"]),
            days_of_week=_days_or_raw(row["days_of_week"]),
            custom_interval_days=row["custom_interval_days"],
            start_date=_date_or_raw(row["start_date"]),
            end_date=_date_or_raw(row["end_date"]),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            last_generated_at=row["last_generated_at"],
        )

    @staticmethod
    def _encode_days(days: tuple) -> str | None:
        if not days:
            return None
        return json.dumps([d.name if isinstance(d, Weekday) else d for d in days])

    def add_rule(
        self,
        owner_id: int,
        title: str,
        priority: Priority,
        pattern: RecurrencePattern,
        start_date: date,
        description: str | None = None,
        estimated_minutes: int | None = None,
        linked_goal_id: str | None = None,
        days_of_week: tuple = (),
        custom_interval_days: int | None = None,
        end_date: date | None = None,
    ) -> RecurrenceRule:
        """Insert a new active rule. Validation happens before this call."""
        now = datetime.now().isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO recurrence_rules
                    (owner_id, title, description, priority, estimated_minutes,
                     linked_goal_id, pattern, days_of_week, custom_interval_days,
                     start_date, end_date, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    owner_id, title, description, priority.value, estimated_minutes,
                    linked_goal_id, pattern.value, self._encode_days(days_of_week),
                    custom_interval_days, start_date.isoformat(),
                    end_date.isoformat() if end_date else None, now,
                ),
            )
            rule_id = cursor.lastrowid

        rule = RecurrenceRule(
            id=rule_id,
            owner_id=owner_id,
            title=title,
            priority=priority,
            pattern=pattern,
            start_date=start_date,
            description=description,
            estimated_minutes=estimated_minutes,
            linked_goal_id=linked_goal_id,
            days_of_week=tuple(days_of_week),
            custom_interval_days=custom_interval_days,
            end_date=end_date,
            is_active=True,
            created_at=now,
        )
        logger.info("Rule added: #%d '%s' (%s) for owner %d", rule_id, title, pattern.value, owner_id)
        return rule

    def get_rule(self, rule_id: int) -> RecurrenceRule | None:
        """Fetch a single rule by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM recurrence_rules WHERE id = ?", (rule_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    def list_rules(
        self, owner_id: int | None = None, active_only: bool = True,
    ) -> list[RecurrenceRule]:
        """List rules in creation order, optionally filtered by owner/active."""
        conditions: list[str] = []
        params: list = []
        if active_only:
            conditions.append("is_active = 1")
        if owner_id is not None:
            conditions.append("owner_id = ?")
            params.append(owner_id)

        query = "SELECT * FROM recurrence_rules"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at, id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_rule(r) for r in rows]

    def update_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        """Persist the editable fields of a rule. History is not touched."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE recurrence_rules SET
                    title = ?, description = ?, priority = ?, estimated_minutes = ?,
                    linked_goal_id = ?, pattern = ?, days_of_week = ?,
                    custom_interval_days = ?, start_date = ?, end_date = ?, is_active = ?
                WHERE id = ?
                """,
                (
                    rule.title, rule.description, rule.priority.value,
                    rule.estimated_minutes, rule.linked_goal_id, rule.pattern.value,
                    self._encode_days(rule.days_of_week), rule.custom_interval_days,
                    rule.start_date.isoformat(),
                    rule.end_date.isoformat() if rule.end_date else None,
                    int(rule.is_active), rule.id,
                ),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Rule {rule.id} not found")
        logger.info("Rule #%d updated", rule.id)
        return rule

    def set_active(self, rule_id: int, active: bool) -> bool:
        """Pause or resume a rule. Returns False if nothing changed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE recurrence_rules SET is_active = ? WHERE id = ? AND is_active = ?",
                (int(active), rule_id, int(not active)),
            )
        changed = cursor.rowcount > 0
        if changed:
            logger.info("Rule #%d %s", rule_id, "resumed" if active else "deactivated")
        return changed

    def mark_generated(self, rule_id: int, when: str | None = None) -> None:
        """Stamp the last time generation inserted instances for a rule."""
        when = when or datetime.now().isoformat()
        with self._connect() as conn:
            conn.execute(
                "UPDATE recurrence_rules SET last_generated_at = ? WHERE id = ?",
                (when, rule_id),
            )


class TaskInstanceDB(_SQLiteDB):
    """SQLite-backed storage for dated task instances."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_instances (
                    id                  TEXT    PRIMARY KEY,
                    owner_id            INTEGER NOT NULL,
                    source_rule_id      INTEGER,
                    scheduled_date      TEXT    NOT NULL,
                    title               TEXT    NOT NULL,
                    description         TEXT,
                    priority            TEXT    NOT NULL,
                    estimated_minutes   INTEGER,
                    linked_goal_id      TEXT,
                    completed           INTEGER NOT NULL DEFAULT 0,
                    priority_downgraded INTEGER NOT NULL DEFAULT 0,
                    original_priority   TEXT,
                    created_at          TEXT    NOT NULL
                )
            """)
            # NULL source_rule_id (manual tasks) never collides in SQLite
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_task_instances_rule_date
                ON task_instances (source_rule_id, scheduled_date)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS ix_task_instances_owner_date
                ON task_instances (owner_id, scheduled_date)
            """)
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(task_instances)").fetchall()
            }
            if "priority_overridden" not in existing_cols:
                conn.execute(
                    "ALTER TABLE task_instances "
                    "ADD COLUMN priority_overridden INTEGER NOT NULL DEFAULT 0"
                )
        logger.debug("Task instances table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> TaskInstance:
        return TaskInstance(
            id=row["id"],
            owner_id=row["owner_id"],
            source_rule_id=row["source_rule_id"],
            scheduled_date=date.fromisoformat(row["scheduled_date"]),
            title=row["title"],
            priority=Priority(row["priority"]),
            description=row["description"],
            estimated_minutes=row["estimated_minutes"],
            linked_goal_id=row["linked_goal_id"],
            completed=bool(row["completed"]),
            priority_downgraded=bool(row["priority_downgraded"]),
            original_priority=_enum_or_raw(Priority, row["original_priority"]),
            priority_overridden=bool(row["priority_overridden"]),
        )

    @staticmethod
    def _instance_params(instance: TaskInstance, created_at: str) -> tuple:
        return (
            instance.id, instance.owner_id, instance.source_rule_id,
            instance.scheduled_date.isoformat(), instance.title, instance.description,
            instance.priority.value, instance.estimated_minutes, instance.linked_goal_id,
            int(instance.completed), int(instance.priority_downgraded),
            instance.original_priority.value if instance.original_priority else None,
            int(instance.priority_overridden), created_at,
        )

    _INSERT = """
        INSERT INTO task_instances
            (id, owner_id, source_rule_id, scheduled_date, title, description,
             priority, estimated_minutes, linked_goal_id, completed,
             priority_downgraded, original_priority, priority_overridden, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """

    def insert_instances(self, instances: list[TaskInstance]) -> int:
        """Insert a batch in one transaction; all or nothing.

        Raises:
            CommitConflictError: if any row hits the (rule, date) unique index
                or an existing id. The whole batch is rolled back.
        """
        if not instances:
            return 0
        now = datetime.now().isoformat()
        try:
            with self._connect() as conn:
                conn.executemany(
                    self._INSERT, [self._instance_params(i, now) for i in instances],
                )
        except sqlite3.IntegrityError as exc:
            raise CommitConflictError(f"Batch insert hit a duplicate: {exc}") from exc
        return len(instances)

    def insert_instance(self, instance: TaskInstance) -> None:
        """Insert a single row.

        Raises:
            CommitConflictError: if the (rule, date) pair already exists.
        """
        try:
            with self._connect() as conn:
                conn.execute(
                    self._INSERT, self._instance_params(instance, datetime.now().isoformat()),
                )
        except sqlite3.IntegrityError as exc:
            raise CommitConflictError(
                f"Instance {instance.id} already exists: {exc}"
            ) from exc

    def add_manual_task(
        self,
        owner_id: int,
        scheduled_date: date,
        title: str,
        priority: Priority,
        description: str | None = None,
        estimated_minutes: int | None = None,
    ) -> TaskInstance:
        """Insert a task that no rule owns (source_rule_id is NULL)."""
        task = TaskInstance(
            id=f"task-{uuid.uuid4().hex}",
            owner_id=owner_id,
            source_rule_id=None,
            scheduled_date=scheduled_date,
            title=title,
            priority=priority,
            description=description,
            estimated_minutes=estimated_minutes,
        )
        self.insert_instance(task)
        logger.info("Manual task added: %s '%s' on %s", task.id, title, scheduled_date)
        return task

    def get_instance(self, instance_id: str) -> TaskInstance | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM task_instances WHERE id = ?", (instance_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_instance(row)

    def existing_dates(
        self, source_rule_id: int, range_start: date, range_end: date,
    ) -> list[date]:
        """Dates in the range that already have an instance of this rule."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT scheduled_date FROM task_instances
                WHERE source_rule_id = ? AND scheduled_date BETWEEN ? AND ?
                ORDER BY scheduled_date
                """,
                (source_rule_id, range_start.isoformat(), range_end.isoformat()),
            ).fetchall()
        return [date.fromisoformat(r["scheduled_date"]) for r in rows]

    def priority_counts(
        self,
        owner_id: int,
        range_start: date,
        range_end: date,
        exclude_id: str | None = None,
    ) -> dict[date, dict[Priority, int]]:
        """Count an owner's tasks per day and tier, manual ones included."""
        query = """
            SELECT scheduled_date, priority, COUNT(*) AS n FROM task_instances
            WHERE owner_id = ? AND scheduled_date BETWEEN ? AND ?
        """
        params: list = [owner_id, range_start.isoformat(), range_end.isoformat()]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        query += " GROUP BY scheduled_date, priority"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        counts: dict[date, dict[Priority, int]] = {}
        for r in rows:
            try:
                day = date.fromisoformat(r["scheduled_date"])
                priority = Priority(r["priority"])
            except ValueError:
                logger.warning(
                    "Ignoring %d task(s) of owner %d with corrupt date/priority %r/%r",
                    r["n"], owner_id, r["scheduled_date"], r["priority"],
                )
                continue
            counts.setdefault(day, {})[priority] = r["n"]
        return counts

    def list_for_date(self, owner_id: int, scheduled_date: date) -> list[TaskInstance]:
        """All of an owner's tasks on one day."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM task_instances
                WHERE owner_id = ? AND scheduled_date = ?
                ORDER BY created_at, id
                """,
                (owner_id, scheduled_date.isoformat()),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    def list_for_rule(self, source_rule_id: int) -> list[TaskInstance]:
        """Every instance a rule has produced, oldest date first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_instances WHERE source_rule_id = ? ORDER BY scheduled_date",
                (source_rule_id,),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    def set_priority(self, instance_id: str, priority: Priority) -> None:
        """Record a manual priority override on an instance."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE task_instances SET priority = ?, priority_overridden = 1 WHERE id = ?",
                (priority.value, instance_id),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Task {instance_id} not found")
        logger.info("Task %s priority overridden to %s", instance_id, priority.value)

    def set_completed(self, instance_id: str, completed: bool = True) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE task_instances SET completed = ? WHERE id = ?",
                (int(completed), instance_id),
            )
