"""
Tool: Quiet Hours Evaluator
Purpose: Decide whether a push must wait, and until when

Usage:
    from homecontrol.mobile.queue.quiet_hours import (
        parse_quiet_hours,
        is_quiet,
        next_allowed,
        should_defer,
        get_quiet_status,
    )

Rules:
    - No window, or start == end: never quiet
    - Same-day window (09:00-17:00): quiet strictly between start and end,
      allowed again at today's end
    - Overnight window (22:00-07:00): quiet after start (evening segment)
      or before end (early-morning segment); the evening segment is allowed
      again at tomorrow's end, the morning segment at today's end
    - Boundaries are exclusive: exactly 22:00 or exactly 07:00 is not quiet

Only hard windows defer into the queue. Soft windows are still "quiet"
here; the caller delivers silently instead of deferring.
"""

from datetime import datetime, timedelta, timezone

from homecontrol.mobile.models import QuietHoursWindow, QuietMode
from homecontrol.recurrence.models import as_utc_datetime
from homecontrol.recurrence.resolver import normalize_zone

UTC = timezone.utc


def parse_quiet_hours(value: QuietHoursWindow | dict | None) -> QuietHoursWindow | None:
    """Accept a stored preference dict or an already-parsed window."""
    if isinstance(value, QuietHoursWindow):
        return value
    return QuietHoursWindow.from_dict(value)


def _window_bounds(
    now: datetime,
    window: QuietHoursWindow,
    fallback_zone: str | None,
) -> tuple[datetime, datetime, datetime]:
    """Local now plus today's start and end instants in the window's zone."""
    tz = normalize_zone(window.zone or fallback_zone or "UTC")
    local_now = as_utc_datetime(now).astimezone(tz)
    today = local_now.date()
    start = datetime.combine(today, window.start, tzinfo=tz)
    end = datetime.combine(today, window.end, tzinfo=tz)
    return local_now, start, end


def is_quiet(
    now: datetime,
    window: QuietHoursWindow | None,
    fallback_zone: str | None = "UTC",
) -> bool:
    """
    Check if `now` falls inside the recipient's quiet window.

    Args:
        now: The instant to check
        window: The recipient's quiet window (None = no quiet hours)
        fallback_zone: Zone to use when the window has none

    Returns:
        True if a non-urgent push should not go out right now
    """
    if window is None or window.is_empty:
        return False

    local_now, start, end = _window_bounds(now, window, fallback_zone)

    if window.wraps_midnight:
        return local_now > start or local_now < end
    return start < local_now < end


def next_allowed(
    now: datetime,
    window: QuietHoursWindow | None,
    fallback_zone: str | None = "UTC",
) -> datetime:
    """
    Get the first instant at or after `now` when delivery is permitted.

    Returns `now` itself when not in quiet hours, otherwise the end of the
    current quiet period as a UTC instant.
    """
    if window is None or window.is_empty:
        return now

    local_now, start, end = _window_bounds(now, window, fallback_zone)

    if window.wraps_midnight:
        if local_now < end:
            # Early-morning segment: allowed at today's end
            return end.astimezone(UTC)
        if local_now > start:
            # Evening segment: allowed at tomorrow's end
            tomorrow_end = datetime.combine(
                local_now.date() + timedelta(days=1), window.end, tzinfo=start.tzinfo
            )
            return tomorrow_end.astimezone(UTC)
        return now

    if start < local_now < end:
        return end.astimezone(UTC)
    return now


def should_defer(
    now: datetime,
    window: QuietHoursWindow | None,
    fallback_zone: str | None = "UTC",
) -> bool:
    """True only for a hard window that is quiet right now."""
    if window is None or window.mode != QuietMode.HARD:
        return False
    return is_quiet(now, window, fallback_zone)


def get_quiet_status(
    now: datetime,
    window: QuietHoursWindow | None,
    fallback_zone: str | None = "UTC",
) -> dict:
    """
    Summarize a recipient's quiet-hours state.

    Returns:
        {
            "in_quiet_hours": bool,
            "mode": "hard" | "soft" | None,
            "ends_at": datetime | None,
            "defer": bool,
        }
    """
    quiet = is_quiet(now, window, fallback_zone)
    return {
        "in_quiet_hours": quiet,
        "mode": window.mode.value if window else None,
        "ends_at": next_allowed(now, window, fallback_zone) if quiet else None,
        "defer": quiet and window is not None and window.mode == QuietMode.HARD,
    }
