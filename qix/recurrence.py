"""Recurrence patterns and next-occurrence arithmetic.

Patterns are written ``daily``, ``weekly:<weekday>``, ``monthly:<day>`` and
``interval:<days>``. The next due date is always computed from the day the
task was completed (or the recurrence was set), never from the previous due
date.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from .errors import ValidationFailedError
from .models import (
    RECUR_DAILY,
    RECUR_INTERVAL,
    RECUR_MONTHLY,
    RECUR_WEEKLY,
    Recurrence,
    format_date,
)

WEEKDAYS = {name.lower(): index for index, name in enumerate(calendar.day_name)}


def _is_number(value: str) -> bool:
    return value.isascii() and value.isdecimal()


def parse_pattern(pattern: str, today: date) -> Recurrence:
    """Build an enabled :class:`Recurrence` from a pattern string."""
    kind, _, value = (pattern or "").strip().partition(":")
    kind = kind.lower()
    value = value.strip()

    if kind == RECUR_DAILY:
        value = ""
    elif kind == RECUR_WEEKLY:
        if not value:
            raise ValidationFailedError("weekly pattern requires day (e.g., weekly:monday)")
        if value.lower() not in WEEKDAYS:
            raise ValidationFailedError(f"unknown weekday '{value}'")
        value = value.lower()
    elif kind == RECUR_MONTHLY:
        if not value:
            raise ValidationFailedError("monthly pattern requires day number (e.g., monthly:15)")
        if not _is_number(value) or not 1 <= int(value) <= 31:
            raise ValidationFailedError("monthly day must be 1-31")
    elif kind == RECUR_INTERVAL:
        if not value:
            raise ValidationFailedError("interval pattern requires number of days (e.g., interval:3)")
        if not _is_number(value) or int(value) < 1:
            raise ValidationFailedError("interval must be a positive number")
    else:
        raise ValidationFailedError(
            f"unknown pattern type: {kind or pattern!r} (use: daily, weekly, monthly, interval)"
        )

    return Recurrence(
        type=kind,
        value=value,
        next_due=format_date(next_occurrence(kind, value, today)),
        enabled=True,
    )


def next_occurrence(kind: str, value: str, today: date) -> date:
    """Return the first due date strictly after ``today``."""
    if kind == RECUR_DAILY:
        return today + timedelta(days=1)

    if kind == RECUR_WEEKLY:
        target = WEEKDAYS.get(value.lower())
        if target is None:
            return today
        days_until = (target - today.weekday()) % 7 or 7
        return today + timedelta(days=days_until)

    if kind == RECUR_MONTHLY:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, min(int(value), last_day))

    if kind == RECUR_INTERVAL:
        return today + timedelta(days=int(value))

    return today


def advance(recurrence: Recurrence, today: date) -> None:
    """Record a completion on ``today`` and schedule the next occurrence."""
    recurrence.last_completed = format_date(today)
    recurrence.next_due = format_date(next_occurrence(recurrence.type, recurrence.value, today))
