"""Tests for recurgen.core.idempotency — set difference of candidate dates."""

from datetime import date

from recurgen.core.idempotency import dates_to_create


def test_removes_existing_dates():
    candidates = {date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)}
    existing = [date(2024, 1, 2)]
    assert dates_to_create(candidates, existing) == [date(2024, 1, 1), date(2024, 1, 3)]


def test_all_existing_yields_nothing():
    days = {date(2024, 1, 1), date(2024, 1, 2)}
    assert dates_to_create(days, days) == []


def test_existing_outside_candidates_ignored():
    assert dates_to_create({date(2024, 1, 5)}, [date(2023, 12, 31)]) == [date(2024, 1, 5)]


def test_result_is_sorted():
    candidates = [date(2024, 1, 9), date(2024, 1, 1), date(2024, 1, 4)]
    assert dates_to_create(candidates, []) == sorted(candidates)


def test_replaying_after_first_run_is_empty():
    candidates = {date(2024, 1, d) for d in range(1, 11)}
    first = dates_to_create(candidates, [])
    assert dates_to_create(candidates, first) == []
