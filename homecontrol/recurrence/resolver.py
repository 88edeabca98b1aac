"""
Tool: Recurrence Resolver
Purpose: Compute a task's next occurrence and notify time

Usage:
    from homecontrol.recurrence.resolver import resolve

    result = resolve(spec, "Europe/Oslo", now)

Algorithm:
    Bounded search. Starting from a cursor at `now`, ask the rule for the
    first occurrence at or after the cursor, then either accept it or move
    the cursor past the day that disqualified it:
    - candidate's local day is before the paused_until local day
      -> cursor = start of the day after paused_until
    - candidate's local day is in skip_dates
      -> cursor = start of the day after the candidate
    The first accepted candidate gets its per-day exception shift applied.
    After MAX_ITERATIONS rejected candidates the task has no occurrence.

Dependencies:
    - python-dateutil (RRULE / RRULESET parsing)
    - zoneinfo (stdlib)
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrulebase, rrulestr

from homecontrol.logging_config import get_logger
from homecontrol.recurrence import DAY_KEY_FORMAT, MAX_ITERATIONS
from homecontrol.recurrence.models import RecurrenceResult, RecurrenceSpec, as_utc_datetime

logger = get_logger(__name__)

UTC = timezone.utc

# A rule text carrying any of these line markers is a full rule set
_SET_SYNTAX = re.compile(r"(^|\n)\s*(EXDATE|RDATE|RRULE)[:;]", re.IGNORECASE)

# Date-times without a zone are read as UTC, like the seed
_DATE_PROPERTIES = ("DTSTART", "RDATE", "EXDATE")
_FLOATING_VALUE = re.compile(r"(\d{8}T\d{6})(?![\dZz])")
_FLOATING_UNTIL = re.compile(r"(UNTIL=\d{8}T\d{6})(?![\dZz])", re.IGNORECASE)

# dateutil raises these for malformed rules or naive/aware mixes
_RULE_ERRORS = (ValueError, TypeError, KeyError, OverflowError)


# =============================================================================
# Time zone helpers
# =============================================================================


def normalize_zone(zone: str | ZoneInfo | None) -> ZoneInfo:
    """Load a time zone by name, falling back to UTC for unknown names."""
    if isinstance(zone, ZoneInfo):
        return zone
    if not zone:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(str(zone))
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("unknown_timezone", zone=zone)
        return ZoneInfo("UTC")


def local_date(instant: datetime, zone: str | ZoneInfo | None) -> date:
    """Calendar date of an instant as seen in the given zone."""
    return as_utc_datetime(instant).astimezone(normalize_zone(zone)).date()


def day_key(instant: datetime, zone: str | ZoneInfo | None) -> str:
    """YYYY-MM-DD key of the instant's local day."""
    return local_date(instant, zone).strftime(DAY_KEY_FORMAT)


def start_of_next_day(day: date | datetime, zone: str | ZoneInfo | None) -> datetime:
    """
    00:00 local on the day after `day`, as a UTC instant.

    Built from the calendar date rather than by adding 24h, so DST
    transitions never land the cursor on the wrong day.
    """
    tz = normalize_zone(zone)
    if isinstance(day, datetime):
        day = local_date(day, tz)
    midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return midnight.astimezone(UTC)


# =============================================================================
# Candidate search
# =============================================================================


def _floating_to_utc(text: str) -> str:
    """Mark zone-less DTSTART/RDATE/EXDATE values and UNTIL as UTC."""
    lines = []
    for line in text.splitlines():
        name, sep, value = line.partition(":")
        head = name.strip().upper()
        if sep and head.split(";")[0] in _DATE_PROPERTIES and "TZID=" not in head:
            line = name + sep + _FLOATING_VALUE.sub(r"\1Z", value)
        lines.append(_FLOATING_UNTIL.sub(r"\1Z", line))
    return "\n".join(lines)


def _parse_rule(text: str, seed: datetime) -> rrulebase:
    """Parse RRULE text, treating EXDATE/RDATE/RRULE line syntax as a rule set."""
    text = _floating_to_utc(text)
    if _SET_SYNTAX.search(text):
        return rrulestr(text, dtstart=seed, forceset=True)
    return rrulestr(text.strip(), dtstart=seed)


def _single_anchor(spec: RecurrenceSpec, cursor: datetime) -> datetime | None:
    anchor = spec.anchor
    if anchor is None:
        return None
    return anchor if anchor >= cursor else None


class _CandidateSource:
    """First occurrence at or after a cursor, from the rule or the anchor."""

    def __init__(self, spec: RecurrenceSpec, now: datetime):
        self.spec = spec
        self.rule: rrulebase | None = None

        if spec.rule:
            seed = spec.anchor or now
            try:
                self.rule = _parse_rule(spec.rule, seed)
            except _RULE_ERRORS as e:
                logger.debug("rrule_parse_failed", rule=spec.rule, error=str(e))

    def next(self, cursor: datetime) -> datetime | None:
        if self.rule is None:
            return _single_anchor(self.spec, cursor)

        try:
            occurrence = self.rule.after(cursor, inc=True)
        except _RULE_ERRORS as e:
            logger.debug("rrule_eval_failed", rule=self.spec.rule, error=str(e))
            self.rule = None
            return _single_anchor(self.spec, cursor)

        if occurrence is None:
            return None
        return as_utc_datetime(occurrence)


# =============================================================================
# resolve
# =============================================================================


def resolve(
    spec: RecurrenceSpec,
    zone: str | ZoneInfo | None,
    now: datetime | None = None,
    max_iterations: int = MAX_ITERATIONS,
) -> RecurrenceResult:
    """
    Resolve the next occurrence of a task.

    Args:
        spec: The task's rule and exception data
        zone: Household time zone name (day keys are computed here)
        now: Reference instant (defaults to the current time)
        max_iterations: Candidate search cap

    Returns:
        RecurrenceResult with occurrence_at / notify_at in UTC, or both None
        when the rule is exhausted, the task has no anchor, or every
        candidate within the cap was rejected.
    """
    tz = normalize_zone(zone)
    now = as_utc_datetime(now) or datetime.now(UTC)

    source = _CandidateSource(spec, now)
    pause_day = local_date(spec.paused_until, tz) if spec.paused_until else None

    cursor = now
    occurrence: datetime | None = None

    for _ in range(max_iterations):
        candidate = source.next(cursor)
        if candidate is None:
            break

        candidate_day = local_date(candidate, tz)
        key = candidate_day.strftime(DAY_KEY_FORMAT)

        if pause_day is not None and candidate_day < pause_day:
            cursor = start_of_next_day(pause_day, tz)
            continue

        if key in spec.skip_dates:
            cursor = start_of_next_day(candidate_day, tz)
            continue

        occurrence = candidate
        shift = spec.exception_shifts.get(key)
        if shift:
            occurrence = occurrence + timedelta(minutes=shift)
        break

    if occurrence is None:
        return RecurrenceResult(occurrence_at=None, notify_at=None)

    notify_at = occurrence
    if spec.prep_window_hours > 0:
        notify_at = occurrence - timedelta(hours=spec.prep_window_hours)

    return RecurrenceResult(occurrence_at=occurrence, notify_at=notify_at)
