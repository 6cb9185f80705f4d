"""Shared test fixtures and configuration.

Sets environment variables before any recurgen import so recurgen.config
loads predictable settings, and provides temp-file databases plus rule
builders.
"""

import os

# Patch env vars BEFORE any recurgen imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("GENERATION_WINDOW_DAYS", "14")
os.environ.setdefault("BACKFILL_DAYS", "30")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import date

import pytest

from recurgen.data.models import Priority, RecurrencePattern, RecurrenceRule


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_recurgen.db")


@pytest.fixture
def rule_db(tmp_db_path):
    """Return a RecurrenceRuleDB backed by a temp file."""
    from recurgen.data.db import RecurrenceRuleDB
    return RecurrenceRuleDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    """Return a TaskInstanceDB sharing the rule DB's temp file."""
    from recurgen.data.db import TaskInstanceDB
    return TaskInstanceDB(db_path=tmp_db_path)


@pytest.fixture
def store(rule_db, task_db):
    """Return a SQLiteTaskStore over the temp databases."""
    from recurgen.adapters.sqlite_store import SQLiteTaskStore
    return SQLiteTaskStore(rule_db=rule_db, task_db=task_db)


def make_rule(**overrides) -> RecurrenceRule:
    """Build an in-memory rule with sensible defaults."""
    fields = dict(
        id=1,
        owner_id=7,
        title="Morning review",
        priority=Priority.SECONDARY,
        pattern=RecurrencePattern.DAILY,
        start_date=date(2024, 1, 1),
        created_at="2024-01-01T08:00:00",
    )
    fields.update(overrides)
    return RecurrenceRule(**fields)


@pytest.fixture
def rule_factory():
    return make_rule
