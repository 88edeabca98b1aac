"""
Tool: Recurrence Models
Purpose: Input and output records for the recurrence resolver

Usage:
    from homecontrol.recurrence.models import RecurrenceSpec, RecurrenceResult

    spec = RecurrenceSpec.from_document(task_doc)
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def as_utc_datetime(value: Any) -> datetime | None:
    """
    Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes and ISO-8601 strings. Naive values are taken to be UTC.
    Anything else (None, empty strings, garbage) becomes None.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _as_shift_minutes(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return int(value)


@dataclass
class RecurrenceSpec:
    """
    Everything the resolver needs to know about one task's schedule.

    rule is RFC 5545 text; None means the task happens once, at
    anchor_start (or anchor_due). skip_dates and exception_shifts are keyed
    by YYYY-MM-DD in the household time zone.
    """

    rule: str | None = None
    anchor_start: datetime | None = None
    anchor_due: datetime | None = None
    prep_window_hours: float = 0
    paused_until: datetime | None = None
    skip_dates: set[str] = field(default_factory=set)
    exception_shifts: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self.anchor_start = as_utc_datetime(self.anchor_start)
        self.anchor_due = as_utc_datetime(self.anchor_due)
        self.paused_until = as_utc_datetime(self.paused_until)
        self.skip_dates = set(self.skip_dates or ())

        try:
            prep = float(self.prep_window_hours or 0)
        except (TypeError, ValueError):
            prep = 0.0
        self.prep_window_hours = prep if prep > 0 and not math.isnan(prep) else 0.0

        shifts = {}
        for key, minutes in (self.exception_shifts or {}).items():
            parsed = _as_shift_minutes(minutes)
            if parsed is not None:
                shifts[str(key)] = parsed
        self.exception_shifts = shifts

    @property
    def anchor(self) -> datetime | None:
        """The single-instance time: start if set, otherwise due."""
        return self.anchor_start or self.anchor_due

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "RecurrenceSpec":
        """Build a spec from a stored task document."""
        skip_dates = doc.get("skip_dates")
        shifts = doc.get("exception_shifts")
        return cls(
            rule=doc.get("rrule") or None,
            anchor_start=doc.get("start_at"),
            anchor_due=doc.get("due_at"),
            prep_window_hours=doc.get("prep_window_hours") or 0,
            paused_until=doc.get("paused_until"),
            skip_dates=set(skip_dates) if isinstance(skip_dates, (list, tuple, set)) else set(),
            exception_shifts=shifts if isinstance(shifts, dict) else {},
        )


@dataclass(frozen=True)
class RecurrenceResult:
    """
    Resolver output.

    occurrence_at is the real event/due time (after any per-day shift);
    notify_at is when the task should surface, prep window already applied.
    Both are None when there is no future occurrence.
    """

    occurrence_at: datetime | None = None
    notify_at: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.occurrence_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "occurrence_at": self.occurrence_at.isoformat() if self.occurrence_at else None,
            "notify_at": self.notify_at.isoformat() if self.notify_at else None,
        }
