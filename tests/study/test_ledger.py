"""Session ledger against a real database with fixed calendar dates."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from studytogether.database import session_scope
from studytogether.db.models import Achievement, StudySession, User
from studytogether.errors import ConflictError, NotFoundError, ValidationError
from studytogether.study import ledger
from studytogether.study.engine import AchievementType

HOUR_MS = 60 * 60 * 1000


def at(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


async def _make_user(daily_goal: int = 2 * HOUR_MS) -> int:
    async with session_scope() as db:
        user = User(
            username="alice",
            email="alice@example.com",
            password_hash="x",
            friend_invite_code="AB12CD34",
            daily_goal=daily_goal,
            is_email_verified=True,
            created_at=at(2026, 9, 1),
        )
        db.add(user)
        await db.commit()
        return user.id


async def _record(user_id: int, start: datetime, end: datetime, now: datetime | None = None, **kwargs) -> ledger.SessionOutcome:
    async with session_scope() as db:
        return await ledger.record_session(db, user_id, start_time=start, end_time=end, now=now or end, **kwargs)


async def _load(user_id: int) -> User:
    async with session_scope() as db:
        return await db.get(User, user_id)


@pytest_asyncio.fixture
async def user_id(db_engine) -> int:
    return await _make_user()


class TestCounterWindows:
    async def test_week_rollover(self, user_id: int) -> None:
        # Saturday, then the following Monday; the week starts on Sunday
        await _record(user_id, at(2026, 10, 17, 10), at(2026, 10, 17, 11))
        saturday = await _load(user_id)
        assert saturday.weekly_study_time == HOUR_MS
        assert saturday.stats_week_start == date(2026, 10, 11)

        await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 10, 30))
        monday = await _load(user_id)
        assert monday.stats_week_start == date(2026, 10, 18)
        assert monday.weekly_study_time == HOUR_MS // 2
        assert monday.monthly_study_time == HOUR_MS + HOUR_MS // 2
        assert monday.total_study_time == HOUR_MS + HOUR_MS // 2
        assert monday.current_streak == 1, "Sunday was skipped"

    async def test_month_rollover(self, user_id: int) -> None:
        await _record(user_id, at(2026, 10, 31, 10), at(2026, 10, 31, 11))
        await _record(user_id, at(2026, 11, 1, 10), at(2026, 11, 1, 11))

        user = await _load(user_id)
        assert user.stats_month_start == date(2026, 11, 1)
        assert user.monthly_study_time == HOUR_MS
        assert user.weekly_study_time == HOUR_MS
        assert user.total_study_time == 2 * HOUR_MS
        assert user.current_streak == 2

    async def test_session_from_last_week_only_counts_in_totals(self, user_id: int) -> None:
        await _record(user_id, at(2026, 10, 17, 20), at(2026, 10, 17, 21), now=at(2026, 10, 19, 9))

        user = await _load(user_id)
        assert user.total_study_time == HOUR_MS
        assert user.weekly_study_time == 0
        assert user.monthly_study_time == HOUR_MS

    async def test_window_totals_read_as_zero_after_rollover(self, user_id: int) -> None:
        await _record(user_id, at(2026, 10, 17, 10), at(2026, 10, 17, 11))
        user = await _load(user_id)
        assert ledger.current_window_totals(user, at(2026, 10, 17, 12)) == (HOUR_MS, HOUR_MS)
        assert ledger.current_window_totals(user, at(2026, 10, 18, 1)) == (0, HOUR_MS)
        assert ledger.current_window_totals(user, at(2026, 11, 2, 1)) == (0, 0)


class TestStreakAndAchievements:
    async def test_past_day_session_leaves_streak(self, user_id: int) -> None:
        await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11))
        outcome = await _record(user_id, at(2026, 10, 19, 20), at(2026, 10, 19, 21), now=at(2026, 10, 20, 8))

        assert outcome.user.current_streak == 1
        assert outcome.user.last_study_date == date(2026, 10, 19)

    async def test_goal_achiever_after_seven_goal_days(self, db_engine) -> None:
        user_id = await _make_user(daily_goal=HOUR_MS)
        unlocked = []
        for day in range(1, 7):
            outcome = await _record(user_id, at(2026, 10, day, 20), at(2026, 10, day, 21))
            unlocked.append([a.value for a in outcome.new_achievements])
        outcome = await _record(user_id, at(2026, 10, 7, 8), at(2026, 10, 7, 9))
        unlocked.append([a.value for a in outcome.new_achievements])

        assert unlocked == [
            ["first_session"],
            [],
            ["streak_3"],
            [],
            ["five_sessions"],
            [],
            ["streak_7", "goal_achiever"],
        ]
        assert outcome.user.current_streak == 7
        assert outcome.user.longest_streak == 7

        async with session_scope() as db:
            rows = (await db.scalars(select(Achievement.type).where(Achievement.user_id == user_id))).all()
        assert sorted(rows) == sorted(
            a.value
            for a in (
                AchievementType.FIRST_SESSION,
                AchievementType.STREAK_3,
                AchievementType.FIVE_SESSIONS,
                AchievementType.STREAK_7,
                AchievementType.GOAL_ACHIEVER,
            )
        )

    async def test_achievements_unlock_once(self, user_id: int) -> None:
        first = await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11))
        second = await _record(user_id, at(2026, 10, 19, 12), at(2026, 10, 19, 13))
        assert first.new_achievements == [AchievementType.FIRST_SESSION]
        assert second.new_achievements == []


class TestRecordValidation:
    async def test_end_before_start(self, user_id: int) -> None:
        with pytest.raises(ValidationError):
            await _record(user_id, at(2026, 10, 19, 11), at(2026, 10, 19, 10))

    async def test_negative_duration(self, user_id: int) -> None:
        with pytest.raises(ValidationError):
            await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11), duration=-1)

    async def test_explicit_duration_is_kept(self, user_id: int) -> None:
        outcome = await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11), duration=1234)
        assert outcome.session.duration == 1234
        assert outcome.user.total_study_time == 1234

    async def test_derived_duration_is_exact(self, user_id: int) -> None:
        start = at(2026, 10, 19, 10)
        outcome = await _record(user_id, start, start + timedelta(seconds=1, milliseconds=1))
        assert outcome.session.duration == 1001
        assert outcome.user.total_study_time == 1001

    async def test_unknown_schedule_writes_nothing(self, user_id: int) -> None:
        with pytest.raises(NotFoundError):
            await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11), schedule_id=404)

        user = await _load(user_id)
        assert user.total_study_time == 0
        assert user.current_streak == 0
        async with session_scope() as db:
            assert await ledger.count_sessions(db, user_id) == 0

    async def test_unknown_user(self, db_engine) -> None:
        with pytest.raises(NotFoundError):
            await _record(999, at(2026, 10, 19, 10), at(2026, 10, 19, 11))


class TestDeleteSession:
    async def test_delete_clamps_and_keeps_streak(self, user_id: int) -> None:
        outcome = await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11))

        async with session_scope() as db:
            user = await db.get(User, user_id)
            user.weekly_study_time = HOUR_MS // 4
            await db.commit()

        async with session_scope() as db:
            await ledger.delete_session(db, user_id, outcome.session.id, now=at(2026, 10, 19, 12))

        user = await _load(user_id)
        assert user.total_study_time == 0
        assert user.weekly_study_time == 0
        assert user.monthly_study_time == 0
        assert user.current_streak == 1
        async with session_scope() as db:
            assert await db.get(StudySession, outcome.session.id) is None
            kinds = (await db.scalars(select(Achievement.type).where(Achievement.user_id == user_id))).all()
        assert kinds == ["first_session"]

    async def test_delete_unknown(self, user_id: int) -> None:
        async with session_scope() as db:
            with pytest.raises(NotFoundError):
                await ledger.delete_session(db, user_id, 12345, now=at(2026, 10, 19, 12))


class TestVersionRetry:
    async def test_stale_write_is_replayed(self, db_engine) -> None:
        calls = []

        async def attempt() -> str:
            calls.append(1)
            if len(calls) == 1:
                msg = "users row changed underneath us"
                raise StaleDataError(msg)
            return "ok"

        async with session_scope() as db:
            assert await ledger._with_version_retry(db, attempt) == "ok"
        assert len(calls) == 2

    async def test_gives_up_with_conflict(self, db_engine) -> None:
        calls = []

        async def attempt() -> None:
            calls.append(1)
            msg = "always stale"
            raise StaleDataError(msg)

        async with session_scope() as db:
            with pytest.raises(ConflictError):
                await ledger._with_version_retry(db, attempt)
        assert len(calls) == 3

    async def test_other_errors_propagate(self, db_engine) -> None:
        async def attempt() -> None:
            msg = "boom"
            raise RuntimeError(msg)

        async with session_scope() as db:
            with pytest.raises(RuntimeError, match="boom"):
                await ledger._with_version_retry(db, attempt)

    async def test_write_bumps_version(self, user_id: int) -> None:
        before = (await _load(user_id)).version_id
        await _record(user_id, at(2026, 10, 19, 10), at(2026, 10, 19, 11))
        assert (await _load(user_id)).version_id == before + 1


class TestDailyGoal:
    async def test_set_goal(self, user_id: int) -> None:
        async with session_scope() as db:
            user = await ledger.set_daily_goal(db, user_id, HOUR_MS, now=at(2026, 10, 19))
        assert user.daily_goal == HOUR_MS
        assert (await _load(user_id)).daily_goal == HOUR_MS

    @pytest.mark.parametrize("goal", [0, 14 * 60 * 1000, 12 * HOUR_MS + 1])
    async def test_out_of_bounds(self, user_id: int, goal: int) -> None:
        async with session_scope() as db:
            with pytest.raises(ValidationError):
                await ledger.set_daily_goal(db, user_id, goal, now=at(2026, 10, 19))


async def test_list_sessions_orders_by_start(user_id: int) -> None:
    for hour in (9, 14, 11):
        await _record(user_id, at(2026, 10, 19, hour), at(2026, 10, 19, hour) + timedelta(minutes=30), now=at(2026, 10, 19, 15))
    async with session_scope() as db:
        rows = await ledger.list_sessions(db, user_id, limit=2)
        assert [r.start_time.hour for r in rows] == [14, 11]
        assert await ledger.count_sessions(db, user_id) == 3


@pytest.mark.parametrize(
    ("span", "expected"),
    [
        (timedelta(seconds=1, milliseconds=1), 1001),
        (timedelta(milliseconds=999, microseconds=999), 999),
        (timedelta(hours=1), 3_600_000),
    ],
)
def test_duration_ms(span: timedelta, expected: int) -> None:
    start = at(2026, 10, 19, 10)
    assert ledger.duration_ms(start, start + span) == expected
