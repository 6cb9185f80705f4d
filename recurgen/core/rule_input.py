"""
Recurgen — Rule input contract.

Recurrence settings are validated once, here, when a rule is created or
updated. Everything downstream can rely on the rule invariants instead of
re-checking them.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from recurgen.core.recurrence import InvalidRuleError, parse_weekdays
from recurgen.data.models import Priority, RecurrencePattern, Weekday


def _coerce_days(v) -> tuple[Weekday, ...]:
    """Accept a list of tokens or a comma-separated string like "MON,WED"."""
    if isinstance(v, str):
        v = [t for t in v.split(",") if t.strip()]
    try:
        return parse_weekdays(v)
    except InvalidRuleError as exc:
        raise ValueError(str(exc)) from exc


class RecurrenceRuleInput(BaseModel):
    """Fields accepted when creating a recurring task template.

    JSON example:
    {
        "title": "Morning review",
        "priority": "PRIMARY",
        "pattern": "WEEKLY",
        "days_of_week": ["MON", "WED", "FRI"],
        "start_date": "2024-01-01"
    }
    """
    title: str
    priority: Priority
    pattern: RecurrencePattern
    start_date: date
    description: str | None = None
    estimated_minutes: int | None = None
    linked_goal_id: str | None = None
    days_of_week: tuple[Weekday, ...] = ()
    custom_interval_days: int | None = None
    end_date: date | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title is required")
        return v.strip()

    @field_validator("priority", "pattern", mode="before")
    @classmethod
    def upper_tokens(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("days_of_week", mode="before")
    @classmethod
    def parse_days(cls, v):
        if v is None:
            return ()
        return _coerce_days(v)

    @field_validator("estimated_minutes")
    @classmethod
    def positive_minutes(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("estimated_minutes must be a positive integer")
        return v

    @model_validator(mode="after")
    def check_pattern_fields(self) -> RecurrenceRuleInput:
        if self.pattern is RecurrencePattern.WEEKLY and not self.days_of_week:
            raise ValueError("Select at least one day of the week for WEEKLY")
        if self.pattern is RecurrencePattern.CUSTOM and (
            self.custom_interval_days is None or self.custom_interval_days < 1
        ):
            raise ValueError("custom_interval_days must be at least 1 for CUSTOM")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        # Parameters of other patterns are ignored, so don't store them
        if self.pattern is not RecurrencePattern.WEEKLY:
            self.days_of_week = ()
        if self.pattern is not RecurrencePattern.CUSTOM:
            self.custom_interval_days = None
        return self


class RecurrenceRuleUpdate(BaseModel):
    """Partial update: only fields that are set get applied."""

    title: str | None = None
    priority: Priority | None = None
    pattern: RecurrencePattern | None = None
    start_date: date | None = None
    description: str | None = None
    estimated_minutes: int | None = None
    linked_goal_id: str | None = None
    days_of_week: tuple[Weekday, ...] | None = None
    custom_interval_days: int | None = None
    end_date: date | None = None
    is_active: bool | None = None

    @field_validator("priority", "pattern", mode="before")
    @classmethod
    def upper_tokens(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("days_of_week", mode="before")
    @classmethod
    def parse_days(cls, v):
        if v is None:
            return None
        return _coerce_days(v)


def parse_rule_input(data: dict) -> RecurrenceRuleInput:
    """Validate raw input, raising InvalidRuleError with pydantic's message."""
    try:
        return RecurrenceRuleInput.model_validate(data)
    except ValidationError as exc:
        raise InvalidRuleError(str(exc)) from exc
