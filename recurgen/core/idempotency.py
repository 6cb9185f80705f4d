"""Idempotency guard — computes which candidate dates still need an instance.

Pure set arithmetic. The storage layer's unique index on
(source_rule_id, scheduled_date) is what actually guarantees at most one
instance per pair; this guard keeps re-runs from attempting needless inserts.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date


def dates_to_create(candidates: Iterable[date], existing: Iterable[date]) -> list[date]:
    """Candidate dates that have no instance yet, in ascending order."""
    return sorted(set(candidates) - set(existing))
