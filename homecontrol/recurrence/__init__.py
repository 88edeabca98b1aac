"""Recurrence Resolver - when does a task happen next?

Given a task's optional RRULE plus its exception data (pause, skipped days,
per-day time shifts) this package computes the next real occurrence and the
earlier "notify" time that accounts for the task's prep window.

Components:
    models.py: RecurrenceSpec / RecurrenceResult
    resolver.py: resolve() and the local-day helpers it is built on

Everything here is pure: no I/O, no shared state. Day-level decisions are
made in the household's time zone, never in UTC.

Usage:
    from homecontrol.recurrence import RecurrenceSpec, resolve

    spec = RecurrenceSpec(rule="FREQ=WEEKLY;BYDAY=MO,WE,FR", anchor_start=start)
    result = resolve(spec, "Europe/Oslo", now)
    result.occurrence_at, result.notify_at
"""

# Hard cap on candidate search so pathological rules always terminate
MAX_ITERATIONS = 50

DAY_KEY_FORMAT = "%Y-%m-%d"

from homecontrol.recurrence.models import RecurrenceResult, RecurrenceSpec  # noqa: E402
from homecontrol.recurrence.resolver import (  # noqa: E402
    day_key,
    normalize_zone,
    resolve,
    start_of_next_day,
)

__all__ = [
    "MAX_ITERATIONS",
    "DAY_KEY_FORMAT",
    "RecurrenceSpec",
    "RecurrenceResult",
    "resolve",
    "day_key",
    "normalize_zone",
    "start_of_next_day",
]
