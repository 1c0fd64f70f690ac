"""Schedule progress and recurrence tests (no database)."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from studytogether.db.models import StudySchedule
from studytogether.study.schedules import (
    apply_session_to_schedule,
    next_occurrence,
    planned_duration,
    refresh_completion,
    total_completed,
)

UTC = timezone.utc
START = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
HALF_HOUR = 30 * 60 * 1000


def _schedule(end: datetime | None = START + timedelta(hours=1), recurring: str = "none") -> StudySchedule:
    return StudySchedule(
        user_id=1,
        title="Calculus",
        subject="Maths",
        start_time=START,
        end_time=end,
        recurring=recurring,
        completed=False,
        completed_sessions=[],
    )


class TestProgress:
    def test_planned_duration(self):
        assert planned_duration(_schedule()) == 60 * 60 * 1000

    def test_open_ended_has_no_plan(self):
        assert planned_duration(_schedule(end=None)) is None

    def test_planned_duration_keeps_odd_milliseconds(self):
        assert planned_duration(_schedule(end=START + timedelta(seconds=1, milliseconds=1))) == 1001

    def test_completes_when_sub_sessions_reach_plan(self):
        schedule = _schedule()
        now = START + timedelta(hours=2)

        apply_session_to_schedule(schedule, HALF_HOUR, START, START + timedelta(minutes=30), now)
        assert schedule.completed is False
        assert total_completed(schedule) == HALF_HOUR

        apply_session_to_schedule(schedule, HALF_HOUR, START, START + timedelta(minutes=30), now)
        assert schedule.completed is True
        assert schedule.completed_at == now
        assert len(schedule.completed_sessions) == 2

    def test_completion_flips_once(self):
        schedule = _schedule()
        now = START + timedelta(hours=2)
        apply_session_to_schedule(schedule, 2 * HALF_HOUR, START, START + timedelta(hours=1), now)
        assert schedule.completed is True
        assert refresh_completion(schedule, now + timedelta(hours=1)) is False
        assert schedule.completed_at == now

    def test_completed_stays_completed_when_plan_grows(self):
        schedule = _schedule()
        apply_session_to_schedule(schedule, 2 * HALF_HOUR, START, START + timedelta(hours=1), START)
        schedule.end_time = START + timedelta(hours=5)
        refresh_completion(schedule, START)
        assert schedule.completed is True

    def test_open_ended_never_completes(self):
        schedule = _schedule(end=None)
        apply_session_to_schedule(schedule, 10 * HALF_HOUR, START, START + timedelta(hours=5), START)
        assert schedule.completed is False

    def test_completion_record_fields(self):
        schedule = _schedule()
        end = START + timedelta(minutes=30)
        record = apply_session_to_schedule(schedule, HALF_HOUR, START, end, end)
        assert record.duration == HALF_HOUR
        assert record.actual_start_time == START
        assert record.actual_end_time == end
        assert record.date == end


class TestNextOccurrence:
    def test_non_recurring_returns_start(self):
        assert next_occurrence(START, "none", START + timedelta(days=3), UTC) == START

    def test_future_start_is_next(self):
        assert next_occurrence(START, "daily", START - timedelta(days=1), UTC) == START

    def test_daily_later_today(self):
        now = datetime(2026, 10, 25, 8, 0, tzinfo=UTC)
        assert next_occurrence(START, "daily", now, UTC) == datetime(2026, 10, 25, 9, 0, tzinfo=UTC)

    def test_daily_rolls_to_tomorrow(self):
        now = datetime(2026, 10, 25, 10, 0, tzinfo=UTC)
        assert next_occurrence(START, "daily", now, UTC) == datetime(2026, 10, 26, 9, 0, tzinfo=UTC)

    def test_exactly_now_counts(self):
        now = datetime(2026, 10, 25, 9, 0, tzinfo=UTC)
        assert next_occurrence(START, "daily", now, UTC) == now

    def test_weekly(self):
        now = datetime(2026, 11, 2, 10, 0, tzinfo=UTC)  # Monday, an hour after the slot
        assert next_occurrence(START, "weekly", now, UTC) == datetime(2026, 11, 9, 9, 0, tzinfo=UTC)

    def test_monthly_clamps_to_short_month(self):
        start = datetime(2026, 1, 31, 9, 0, tzinfo=UTC)
        now = datetime(2026, 2, 15, 0, 0, tzinfo=UTC)
        assert next_occurrence(start, "monthly", now, UTC) == datetime(2026, 2, 28, 9, 0, tzinfo=UTC)

    def test_monthly_returns_to_original_day(self):
        start = datetime(2026, 1, 31, 9, 0, tzinfo=UTC)
        now = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
        assert next_occurrence(start, "monthly", now, UTC) == datetime(2026, 3, 31, 9, 0, tzinfo=UTC)

    def test_daily_keeps_wall_clock_across_dst(self):
        """09:00 in New York is 14:00 UTC in winter and 13:00 UTC after the spring change."""
        tz = ZoneInfo("America/New_York")
        start = datetime(2026, 3, 1, 14, 0, tzinfo=UTC)
        now = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
        assert next_occurrence(start, "daily", now, tz) == datetime(2026, 3, 10, 13, 0, tzinfo=UTC)

    def test_unknown_recurrence(self):
        with pytest.raises(ValueError, match="Unknown recurrence"):
            next_occurrence(START, "yearly", START + timedelta(days=1), UTC)
