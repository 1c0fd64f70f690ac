"""Streak and achievement rules.

Everything here is pure: callers pass in the user's current state, the new
session and "now", and get back the new streak and the achievements that
just became due. Persistence lives in ``studytogether.study.ledger``.

Calendar boundaries (days, weeks, months) are local midnights in the
configured study timezone.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

from studytogether.config import get_settings
from studytogether.errors import ValidationError


class AchievementType(str, Enum):
    """The fixed achievement taxonomy, in evaluation order."""

    FIRST_SESSION = "first_session"
    FIVE_SESSIONS = "five_sessions"
    TWENTY_FIVE_SESSIONS = "twenty_five_sessions"
    STREAK_3 = "streak_3"
    STREAK_7 = "streak_7"
    STREAK_30 = "streak_30"
    GOAL_ACHIEVER = "goal_achiever"


ACHIEVEMENT_TITLES: dict[AchievementType, str] = {
    AchievementType.FIRST_SESSION: "First Study Session!",
    AchievementType.FIVE_SESSIONS: "5 Study Sessions Complete!",
    AchievementType.TWENTY_FIVE_SESSIONS: "25 Study Sessions Master!",
    AchievementType.STREAK_3: "3-Day Study Streak!",
    AchievementType.STREAK_7: "7-Day Study Streak!",
    AchievementType.STREAK_30: "30-Day Study Streak!",
    AchievementType.GOAL_ACHIEVER: "Weekly Goal Achiever!",
}


def achievement_title(kind: str) -> str:
    try:
        return ACHIEVEMENT_TITLES[AchievementType(kind)]
    except ValueError:
        return kind


SESSION_COUNT_THRESHOLDS: dict[AchievementType, int] = {
    AchievementType.FIVE_SESSIONS: 5,
    AchievementType.TWENTY_FIVE_SESSIONS: 25,
}

STREAK_THRESHOLDS: dict[AchievementType, int] = {
    AchievementType.STREAK_3: 3,
    AchievementType.STREAK_7: 7,
    AchievementType.STREAK_30: 30,
}

GOAL_WINDOW_DAYS = 7
GOAL_DAYS_REQUIRED = 7


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def study_tz() -> tzinfo:
    """The timezone whose midnights delimit study days."""
    return ZoneInfo(get_settings().timezone)


def local_day(dt: datetime, tz: tzinfo | None = None) -> date:
    """Calendar day of an aware timestamp in the study timezone."""
    return dt.astimezone(tz or study_tz()).date()


def local_midnight(day: date, tz: tzinfo | None = None) -> datetime:
    """Aware datetime for 00:00 local time on ``day``."""
    return datetime.combine(day, time.min, tzinfo=tz or study_tz())


def week_start(now: datetime, tz: tzinfo | None = None) -> datetime:
    """Start of the current week: local midnight of today minus day-of-week (Sunday = 0)."""
    tz = tz or study_tz()
    today = local_day(now, tz)
    days_since_sunday = (today.weekday() + 1) % 7
    return local_midnight(today - timedelta(days=days_since_sunday), tz)


def month_start(now: datetime, tz: tzinfo | None = None) -> datetime:
    """Local midnight on the first day of the current calendar month."""
    tz = tz or study_tz()
    return local_midnight(local_day(now, tz).replace(day=1), tz)


# ---------------------------------------------------------------------------
# Streak
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreakState:
    """Streak fields as stored on the user."""

    current_streak: int
    last_study_date: date | None
    longest_streak: int = 0


def advance_streak(state: StreakState, session_day: date, today: date) -> StreakState:
    """Apply one recorded session to the streak.

    Only sessions that start "today" move a running streak; a session logged
    for a past day leaves it untouched. The very first session always starts
    a streak of 1.
    """
    if state.last_study_date is None:
        return StreakState(1, session_day, max(state.longest_streak, 1))

    if session_day != today:
        return state

    if state.last_study_date == today:
        return state

    if state.last_study_date == today - timedelta(days=1):
        streak = state.current_streak + 1
    else:
        streak = 1
    return StreakState(streak, today, max(state.longest_streak, streak))


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


def count_goal_days(
    sessions: Iterable[tuple[datetime, int]],
    daily_goal: int,
    now: datetime,
    tz: tzinfo | None = None,
) -> int:
    """Count local days in the trailing window whose summed duration meets the goal.

    ``sessions`` yields ``(start_time, duration_ms)`` pairs; only those that
    start within the last ``GOAL_WINDOW_DAYS`` * 24h are considered.
    """
    tz = tz or study_tz()
    window_start = now - timedelta(days=GOAL_WINDOW_DAYS)
    per_day: dict[date, int] = defaultdict(int)
    for start_time, duration in sessions:
        if window_start <= start_time <= now:
            per_day[local_day(start_time, tz)] += duration
    return sum(1 for total in per_day.values() if total >= daily_goal)


def due_achievements(
    *,
    session_count: int,
    current_streak: int,
    goal_days: int,
    unlocked: Iterable[str] = (),
) -> list[AchievementType]:
    """Return achievement types that qualify now and are not yet unlocked."""
    have = set(unlocked)
    qualifying: list[AchievementType] = []

    if session_count == 1:
        qualifying.append(AchievementType.FIRST_SESSION)
    for kind, threshold in SESSION_COUNT_THRESHOLDS.items():
        if session_count >= threshold:
            qualifying.append(kind)
    for kind, threshold in STREAK_THRESHOLDS.items():
        if current_streak >= threshold:
            qualifying.append(kind)
    if goal_days >= GOAL_DAYS_REQUIRED:
        qualifying.append(AchievementType.GOAL_ACHIEVER)

    order = list(AchievementType)
    return sorted(
        (kind for kind in qualifying if kind.value not in have),
        key=order.index,
    )


def validate_interval(start_time: datetime, end_time: datetime, duration: int) -> None:
    """Reject malformed sessions before anything is written."""
    if duration < 0:
        msg = "Session duration cannot be negative"
        raise ValidationError(msg)
    if end_time < start_time:
        msg = "Session end time is before its start time"
        raise ValidationError(msg)
