"""Tests for recurgen.core.priority_enforcer — per-day tier caps."""

from datetime import date

import pytest

from recurgen.core.priority_enforcer import (
    DayLedger,
    PriorityEnforcer,
    PriorityLimitError,
    check_override,
)
from recurgen.data.models import Priority, TaskInstance

DAY = date(2024, 1, 8)


def _instance(n: int, priority: Priority, owner_id: int = 7, day: date = DAY) -> TaskInstance:
    return TaskInstance(
        id=f"rule{n}-{day:%Y%m%d}",
        owner_id=owner_id,
        source_rule_id=n,
        scheduled_date=day,
        title=f"Task {n}",
        priority=priority,
    )


class TestMitUniqueness:
    def test_first_mit_kept(self):
        enforcer = PriorityEnforcer()
        inst = _instance(1, Priority.MIT)
        assert enforcer.admit(inst) is None
        assert inst.priority is Priority.MIT
        assert inst.priority_downgraded is False

    def test_second_mit_downgraded_to_primary(self):
        enforcer = PriorityEnforcer()
        enforcer.admit(_instance(1, Priority.MIT))
        second = _instance(2, Priority.MIT)
        downgrade = enforcer.admit(second)

        assert second.priority is Priority.PRIMARY
        assert second.priority_downgraded is True
        assert second.original_priority is Priority.MIT
        assert downgrade.instance_id == second.id
        assert downgrade.from_priority is Priority.MIT
        assert downgrade.to_priority is Priority.PRIMARY

    def test_persisted_manual_mit_counts(self):
        ledger = DayLedger()
        ledger.load(7, {DAY: {Priority.MIT: 1}})
        inst = _instance(1, Priority.MIT)
        assert PriorityEnforcer(ledger).admit(inst) is not None
        assert inst.priority is Priority.PRIMARY

    def test_days_are_independent(self):
        enforcer = PriorityEnforcer()
        enforcer.admit(_instance(1, Priority.MIT, day=date(2024, 1, 8)))
        assert enforcer.admit(_instance(2, Priority.MIT, day=date(2024, 1, 9))) is None

    def test_owners_are_independent(self):
        enforcer = PriorityEnforcer()
        enforcer.admit(_instance(1, Priority.MIT, owner_id=1))
        assert enforcer.admit(_instance(2, Priority.MIT, owner_id=2)) is None


class TestPrimaryCap:
    def test_fourth_primary_downgraded(self):
        enforcer = PriorityEnforcer()
        for n in range(3):
            assert enforcer.admit(_instance(n, Priority.PRIMARY)) is None
        fourth = _instance(4, Priority.PRIMARY)
        downgrade = enforcer.admit(fourth)
        assert fourth.priority is Priority.SECONDARY
        assert downgrade.to_priority is Priority.SECONDARY

    def test_mit_cascades_when_primary_full(self):
        ledger = DayLedger()
        ledger.load(7, {DAY: {Priority.MIT: 1, Priority.PRIMARY: 3}})
        inst = _instance(9, Priority.MIT)
        downgrade = PriorityEnforcer(ledger).admit(inst)
        assert inst.priority is Priority.SECONDARY
        assert downgrade.from_priority is Priority.MIT
        assert downgrade.to_priority is Priority.SECONDARY

    def test_downgraded_mit_takes_primary_slot(self):
        enforcer = PriorityEnforcer()
        enforcer.admit(_instance(1, Priority.MIT))
        enforcer.admit(_instance(2, Priority.MIT))  # -> PRIMARY
        assert enforcer.ledger.count(7, DAY, Priority.PRIMARY) == 1


class TestSecondary:
    def test_unlimited(self):
        enforcer = PriorityEnforcer()
        for n in range(20):
            assert enforcer.admit(_instance(n, Priority.SECONDARY)) is None


class TestDowngradeRecord:
    def test_to_dict(self):
        enforcer = PriorityEnforcer()
        enforcer.admit(_instance(1, Priority.MIT))
        record = enforcer.admit(_instance(2, Priority.MIT)).to_dict()
        assert record == {
            "instance_id": "rule2-20240108",
            "date": "2024-01-08",
            "from": "MIT",
            "to": "PRIMARY",
        }


class TestCheckOverride:
    def test_allows_when_room(self):
        check_override({Priority.PRIMARY: 2}, Priority.PRIMARY)

    def test_rejects_second_mit(self):
        with pytest.raises(PriorityLimitError, match="Maximum 1 MIT"):
            check_override({Priority.MIT: 1}, Priority.MIT)

    def test_secondary_never_rejected(self):
        check_override({Priority.SECONDARY: 99}, Priority.SECONDARY)
