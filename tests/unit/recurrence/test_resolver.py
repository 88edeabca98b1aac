"""Tests for homecontrol/recurrence/resolver.py

The resolver answers "when does this task happen next?" for one-off and
recurring tasks. Key functionality:
- RRULE and rule-set (EXDATE/RDATE) evaluation
- Pauses, skipped days and per-day time shifts, all keyed by local day
- Prep window (notify earlier than the occurrence)
- Fallback to the single anchor when the rule can't be used

These tests pin the behaviour the task-write hook relies on.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from homecontrol.recurrence import (
    RecurrenceResult,
    RecurrenceSpec,
    day_key,
    normalize_zone,
    resolve,
    start_of_next_day,
)

UTC = timezone.utc
OSLO = "Europe/Oslo"

# Monday 2025-03-10 08:00Z; Oslo is on CET (+01:00) until 2025-03-30
MONDAY_0800 = datetime(2025, 3, 10, 8, 0, tzinfo=UTC)
TUESDAY_0900 = datetime(2025, 3, 11, 9, 0, tzinfo=UTC)


def at(day: int, hour: int = 8, minute: int = 0) -> datetime:
    """March 2025 instant in UTC."""
    return datetime(2025, 3, day, hour, minute, tzinfo=UTC)


def daily(**kwargs) -> RecurrenceSpec:
    return RecurrenceSpec(rule="FREQ=DAILY", anchor_start=MONDAY_0800, **kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# Rule evaluation
# ─────────────────────────────────────────────────────────────────────────────


class TestRuleEvaluation:
    """Tests for plain RRULE resolution."""

    def test_weekly_byday_with_prep_window(self):
        """Mon/Wed/Fri from a Monday, queried Tuesday, lands on Wednesday."""
        spec = RecurrenceSpec(
            rule="FREQ=WEEKLY;BYDAY=MO,WE,FR",
            anchor_start=MONDAY_0800,
            prep_window_hours=1,
        )

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(12, 8)
        assert result.notify_at == at(12, 7)

    def test_resolution_is_deterministic(self):
        """Same inputs, same answer."""
        spec = RecurrenceSpec(
            rule="FREQ=WEEKLY;BYDAY=MO,WE,FR",
            anchor_start=MONDAY_0800,
            skip_dates={"2025-03-12"},
            exception_shifts={"2025-03-14": 30},
        )

        first = resolve(spec, OSLO, TUESDAY_0900)
        second = resolve(spec, OSLO, TUESDAY_0900)

        assert first == second
        assert first.occurrence_at == at(14, 8, 30)

    def test_occurrence_at_now_is_included(self):
        """An occurrence exactly at `now` counts as next."""
        result = resolve(daily(), OSLO, at(12, 8))

        assert result.occurrence_at == at(12, 8)

    def test_without_prep_notify_equals_occurrence(self):
        result = resolve(daily(), OSLO, TUESDAY_0900)

        assert result.notify_at == result.occurrence_at == at(12, 8)

    def test_count_exhausted_returns_none(self):
        """A rule whose instances are all in the past has no next occurrence."""
        spec = RecurrenceSpec(rule="FREQ=DAILY;COUNT=2", anchor_start=MONDAY_0800)

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result == RecurrenceResult(occurrence_at=None, notify_at=None)
        assert result.exists is False

    def test_until_bounds_the_rule(self):
        spec = RecurrenceSpec(
            rule="FREQ=DAILY;UNTIL=20250312T235959Z",
            anchor_start=MONDAY_0800,
        )

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(12, 8)
        assert resolve(spec, OSLO, at(13, 0)).occurrence_at is None

    def test_rule_without_anchor_is_seeded_from_now(self):
        spec = RecurrenceSpec(rule="FREQ=DAILY")

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == TUESDAY_0900

    def test_results_are_utc(self):
        result = resolve(daily(), OSLO, TUESDAY_0900)

        assert result.occurrence_at.utcoffset() == timedelta(0)

    def test_floating_dtstart_is_read_as_utc(self):
        spec = RecurrenceSpec(rule="DTSTART:20250106T080000\nRRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR")

        result = resolve(spec, "UTC", datetime(2025, 1, 7, 9, 0, tzinfo=UTC))

        assert result.occurrence_at == datetime(2025, 1, 8, 8, 0, tzinfo=UTC)

    def test_floating_exdate_removes_an_instance(self):
        spec = RecurrenceSpec(
            rule="DTSTART:20250106T080000\nRRULE:FREQ=DAILY\nEXDATE:20250108T080000"
        )

        result = resolve(spec, "UTC", datetime(2025, 1, 7, 9, 0, tzinfo=UTC))

        assert result.occurrence_at == datetime(2025, 1, 9, 8, 0, tzinfo=UTC)

    def test_dtstart_with_tzid_keeps_its_zone(self):
        spec = RecurrenceSpec(rule="DTSTART;TZID=Europe/Oslo:20250106T080000\nRRULE:FREQ=DAILY")

        result = resolve(spec, OSLO, datetime(2025, 1, 7, 9, 0, tzinfo=UTC))

        # 08:00 CET is 07:00Z
        assert result.occurrence_at == datetime(2025, 1, 8, 7, 0, tzinfo=UTC)


class TestRuleSets:
    """Tests for EXDATE / RDATE rule-set text."""

    def test_exdate_removes_an_instance(self):
        spec = RecurrenceSpec(
            rule="RRULE:FREQ=DAILY\nEXDATE:20250312T080000Z",
            anchor_start=MONDAY_0800,
        )

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(13, 8)

    def test_rdate_adds_an_instance(self):
        spec = RecurrenceSpec(
            rule="RRULE:FREQ=WEEKLY;BYDAY=MO\nRDATE:20250312T100000Z",
            anchor_start=MONDAY_0800,
        )

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(12, 10)


# ─────────────────────────────────────────────────────────────────────────────
# Single-instance tasks and fallbacks
# ─────────────────────────────────────────────────────────────────────────────


class TestSingleAnchor:
    """Tests for tasks without a usable rule."""

    def test_future_start_is_the_occurrence(self):
        spec = RecurrenceSpec(anchor_start=at(20, 18), prep_window_hours=2)

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(20, 18)
        assert result.notify_at == at(20, 16)

    def test_due_used_when_no_start(self):
        spec = RecurrenceSpec(anchor_due=at(15, 12))

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(15, 12)

    def test_start_wins_over_due(self):
        spec = RecurrenceSpec(anchor_start=at(14, 9), anchor_due=at(15, 12))

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(14, 9)

    def test_past_anchor_returns_none(self):
        spec = RecurrenceSpec(anchor_start=MONDAY_0800)

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at is None

    def test_no_rule_no_anchor_returns_none(self):
        assert resolve(RecurrenceSpec(), OSLO, TUESDAY_0900).exists is False

    def test_unparseable_rule_falls_back_to_anchor(self):
        spec = RecurrenceSpec(rule="FREQ=SOMETIMES", anchor_start=at(20, 8))

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(20, 8)

    def test_unparseable_rule_with_past_anchor_returns_none(self):
        spec = RecurrenceSpec(rule="not a rule at all", anchor_start=MONDAY_0800)

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at is None

    def test_floating_until_is_read_as_utc(self):
        """UNTIL without Z bounds the rule as if it were UTC."""
        spec = RecurrenceSpec(
            rule="FREQ=DAILY;UNTIL=20250313T000000",
            anchor_start=MONDAY_0800,
        )

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(12, 8)
        assert resolve(spec, OSLO, at(12, 9)).occurrence_at is None

    def test_unknown_zone_behaves_as_utc(self):
        spec = daily(skip_dates={"2025-03-12"})

        assert resolve(spec, "Mars/Olympus", TUESDAY_0900) == resolve(spec, "UTC", TUESDAY_0900)


# ─────────────────────────────────────────────────────────────────────────────
# Pause / skip / shift
# ─────────────────────────────────────────────────────────────────────────────


class TestPause:
    """Tests for paused_until."""

    def test_pause_moves_past_paused_day(self):
        """Nothing before the pause day, resumes the day after it."""
        spec = daily(paused_until=at(14, 12))

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(15, 8)

    def test_no_occurrence_before_pause_day(self):
        for pause_day in range(12, 20):
            spec = daily(paused_until=at(pause_day, 12))

            result = resolve(spec, OSLO, TUESDAY_0900)

            assert result.occurrence_at.date() >= date(2025, 3, pause_day)

    def test_past_pause_is_ignored(self):
        spec = daily(paused_until=MONDAY_0800)

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(12, 8)


class TestSkip:
    """Tests for skip_dates."""

    def test_skipped_day_is_passed_over(self):
        spec = daily(skip_dates={"2025-03-12"})

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(13, 8)

    def test_consecutive_skips(self):
        spec = daily(skip_dates={"2025-03-12", "2025-03-13", "2025-03-14"})

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(15, 8)

    def test_returned_day_is_never_skipped(self):
        skip = {f"2025-03-{d:02d}" for d in (12, 14, 15, 17)}
        spec = daily(skip_dates=skip)

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert day_key(result.occurrence_at, OSLO) not in skip
        assert result.occurrence_at == at(13, 8)

    def test_skip_is_keyed_by_local_day(self):
        """23:30Z is already the next day in Oslo."""
        spec = RecurrenceSpec(
            rule="FREQ=DAILY",
            anchor_start=at(10, 23, 30),
            skip_dates={"2025-03-12"},
        )

        # 2025-03-11T23:30Z is 2025-03-12 00:30 in Oslo: skipped there
        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(12, 23, 30)
        # ...but 2025-03-11 in UTC: not skipped
        assert resolve(spec, "UTC", TUESDAY_0900).occurrence_at == at(11, 23, 30)

    def test_pause_and_skip_together(self):
        """A candidate hitting both rules is advanced past both."""
        spec = daily(paused_until=at(14, 12), skip_dates={"2025-03-15"})

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(16, 8)


class TestExceptionShifts:
    """Tests for per-day time shifts."""

    def test_positive_shift(self):
        spec = daily(exception_shifts={"2025-03-12": 90}, prep_window_hours=1)

        result = resolve(spec, OSLO, TUESDAY_0900)

        assert result.occurrence_at == at(12, 9, 30)
        assert result.notify_at == at(12, 8, 30)

    def test_negative_shift(self):
        spec = daily(exception_shifts={"2025-03-12": -30})

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(12, 7, 30)

    def test_shift_on_other_day_does_not_apply(self):
        spec = daily(exception_shifts={"2025-03-13": 60})

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(12, 8)

    def test_shift_applies_after_skip(self):
        spec = daily(skip_dates={"2025-03-12"}, exception_shifts={"2025-03-13": 15})

        assert resolve(spec, OSLO, TUESDAY_0900).occurrence_at == at(13, 8, 15)


class TestIterationCap:
    """Tests for the bounded candidate search."""

    def test_too_many_rejections_returns_none(self):
        start = date(2025, 3, 12)
        skip = {(start + timedelta(days=i)).isoformat() for i in range(60)}

        result = resolve(daily(skip_dates=skip), OSLO, TUESDAY_0900)

        assert result.occurrence_at is None
        assert result.notify_at is None

    def test_custom_cap(self):
        spec = daily(skip_dates={"2025-03-12", "2025-03-13", "2025-03-14"})

        assert resolve(spec, OSLO, TUESDAY_0900, max_iterations=3).occurrence_at is None
        assert resolve(spec, OSLO, TUESDAY_0900, max_iterations=4).occurrence_at == at(15, 8)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers and input parsing
# ─────────────────────────────────────────────────────────────────────────────


class TestDayHelpers:
    """Tests for local-day helpers."""

    def test_day_key_uses_local_calendar(self):
        instant = at(10, 23, 30)

        assert day_key(instant, OSLO) == "2025-03-11"
        assert day_key(instant, "UTC") == "2025-03-10"

    def test_start_of_next_day_before_dst(self):
        # 2025-03-30 00:00 in Oslo is still CET
        assert start_of_next_day(date(2025, 3, 29), OSLO) == datetime(2025, 3, 29, 23, tzinfo=UTC)

    def test_start_of_next_day_after_dst(self):
        # 2025-03-31 00:00 in Oslo is CEST
        assert start_of_next_day(date(2025, 3, 30), OSLO) == datetime(2025, 3, 30, 22, tzinfo=UTC)

    def test_start_of_next_day_from_instant(self):
        assert start_of_next_day(at(10, 23, 30), OSLO) == at(11, 23)

    @pytest.mark.parametrize("zone", [None, "", "Not/AZone", "CET-ish"])
    def test_normalize_zone_falls_back_to_utc(self, zone):
        assert normalize_zone(zone).key == "UTC"


class TestFromDocument:
    """Tests for RecurrenceSpec.from_document."""

    def test_reads_task_document(self):
        spec = RecurrenceSpec.from_document({
            "rrule": "FREQ=WEEKLY;BYDAY=MO,WE,FR",
            "start_at": "2025-03-10T08:00:00Z",
            "prep_window_hours": 1,
            "paused_until": "2025-03-14T12:00:00+00:00",
            "skip_dates": ["2025-03-17"],
            "exception_shifts": {"2025-03-19": 45},
        })

        assert spec.rule == "FREQ=WEEKLY;BYDAY=MO,WE,FR"
        assert spec.anchor_start == MONDAY_0800
        assert spec.prep_window_hours == 1
        assert spec.paused_until == at(14, 12)
        assert spec.skip_dates == {"2025-03-17"}
        assert spec.exception_shifts == {"2025-03-19": 45}

    def test_naive_times_are_utc(self):
        spec = RecurrenceSpec.from_document({"due_at": "2025-03-15T12:00:00"})

        assert spec.anchor_due == at(15, 12)

    @pytest.mark.parametrize("prep", [-2, float("nan"), "lots", None])
    def test_bad_prep_window_is_zero(self, prep):
        spec = RecurrenceSpec.from_document({"prep_window_hours": prep})

        assert spec.prep_window_hours == 0

    def test_ignores_malformed_fields(self):
        spec = RecurrenceSpec.from_document({
            "start_at": "yesterday-ish",
            "skip_dates": "2025-03-12",
            "exception_shifts": {"2025-03-12": "soon", "2025-03-13": 10},
        })

        assert spec.anchor_start is None
        assert spec.skip_dates == set()
        assert spec.exception_shifts == {"2025-03-13": 10}
