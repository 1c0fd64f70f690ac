"""Schedule endpoints and completion through linked sessions."""

from __future__ import annotations

from datetime import datetime, timedelta

from httpx import AsyncClient

SCHEDULE = "/api/v1/study/schedule"
SCHEDULES = "/api/v1/study/schedules"
STOP = "/api/v1/study/session/stop"

HOUR_MS = 60 * 60 * 1000


async def _create(client: AsyncClient, user: dict, **fields) -> dict:
    response = await client.post(SCHEDULE, json=fields, headers=user["headers"])
    assert response.status_code == 200, response.text
    return response.json()["schedule"]


async def _study_for(client: AsyncClient, user: dict, clock, schedule_id: int, minutes: int) -> None:
    body = {"startTime": (clock.now - timedelta(minutes=minutes)).isoformat(), "scheduleId": schedule_id}
    response = await client.post(STOP, json=body, headers=user["headers"])
    assert response.status_code == 200, response.text


class TestCreateSchedule:
    async def test_create(self, client: AsyncClient, alice: dict, clock) -> None:
        start = clock.now + timedelta(hours=2)
        schedule = await _create(
            client,
            alice,
            title="Calculus review",
            subject="Maths",
            startTime=start.isoformat(),
            endTime=(start + timedelta(hours=1)).isoformat(),
            recurring="weekly",
        )
        assert schedule["title"] == "Calculus review"
        assert schedule["subject"] == "Maths"
        assert schedule["recurring"] == "weekly"
        assert schedule["completed"] is False
        assert schedule["completedAt"] is None
        assert schedule["completedSessions"] == []
        assert schedule["totalCompleted"] == 0
        assert schedule["plannedDuration"] == HOUR_MS
        assert datetime.fromisoformat(schedule["nextOccurrence"]) == start

        listing = (await client.get(SCHEDULES, headers=alice["headers"])).json()
        assert [s["id"] for s in listing["schedules"]] == [schedule["id"]]

    async def test_open_ended(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(client, alice, title="Reading", subject="History", startTime=clock.now.isoformat())
        assert schedule["endTime"] is None
        assert schedule["plannedDuration"] is None
        assert schedule["recurring"] == "none"

    async def test_end_before_start(self, client: AsyncClient, alice: dict, clock) -> None:
        response = await client.post(
            SCHEDULE,
            json={
                "title": "Backwards",
                "subject": "Maths",
                "startTime": clock.now.isoformat(),
                "endTime": (clock.now - timedelta(minutes=1)).isoformat(),
            },
            headers=alice["headers"],
        )
        assert response.status_code == 400

    async def test_unknown_recurrence(self, client: AsyncClient, alice: dict, clock) -> None:
        response = await client.post(
            SCHEDULE,
            json={"title": "Yearly", "subject": "Maths", "startTime": clock.now.isoformat(), "recurring": "yearly"},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    async def test_blank_title(self, client: AsyncClient, alice: dict, clock) -> None:
        response = await client.post(
            SCHEDULE,
            json={"title": "   ", "subject": "Maths", "startTime": clock.now.isoformat()},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    async def test_daily_schedule_in_the_past_points_forward(self, client: AsyncClient, alice: dict, clock) -> None:
        start = clock.now - timedelta(days=3) + timedelta(hours=1)
        schedule = await _create(
            client, alice, title="Vocab", subject="French", startTime=start.isoformat(), recurring="daily"
        )
        assert datetime.fromisoformat(schedule["nextOccurrence"]) == clock.now + timedelta(hours=1)

    async def test_schedules_are_private(self, client: AsyncClient, alice: dict, bob: dict, clock) -> None:
        await _create(client, alice, title="Mine", subject="Maths", startTime=clock.now.isoformat())
        listing = (await client.get(SCHEDULES, headers=bob["headers"])).json()
        assert listing["schedules"] == []


class TestScheduleProgress:
    async def test_linked_sessions_complete_the_plan(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(
            client,
            alice,
            title="Essay",
            subject="English",
            startTime=clock.now.isoformat(),
            endTime=(clock.now + timedelta(hours=1)).isoformat(),
        )

        clock.advance(minutes=30)
        await _study_for(client, alice, clock, schedule["id"], minutes=30)
        current = (await client.get(SCHEDULES, headers=alice["headers"])).json()["schedules"][0]
        assert current["totalCompleted"] == HOUR_MS // 2
        assert len(current["completedSessions"]) == 1
        assert current["completed"] is False

        clock.advance(minutes=30)
        await _study_for(client, alice, clock, schedule["id"], minutes=30)
        current = (await client.get(SCHEDULES, headers=alice["headers"])).json()["schedules"][0]
        assert current["totalCompleted"] == HOUR_MS
        assert current["completed"] is True
        assert datetime.fromisoformat(current["completedAt"]) == clock.now

    async def test_open_ended_never_completes(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(client, alice, title="Free", subject="Art", startTime=clock.now.isoformat())
        clock.advance(hours=3)
        await _study_for(client, alice, clock, schedule["id"], minutes=180)
        current = (await client.get(SCHEDULES, headers=alice["headers"])).json()["schedules"][0]
        assert current["totalCompleted"] == 3 * HOUR_MS
        assert current["completed"] is False


class TestUpdateSchedule:
    async def test_partial_update(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(client, alice, title="Old", subject="Maths", startTime=clock.now.isoformat())
        response = await client.put(f"{SCHEDULE}/{schedule['id']}", json={"title": "New"}, headers=alice["headers"])
        assert response.status_code == 200
        updated = response.json()["schedule"]
        assert updated["title"] == "New"
        assert updated["subject"] == "Maths"

    async def test_clear_end_time(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(
            client,
            alice,
            title="Plan",
            subject="Maths",
            startTime=clock.now.isoformat(),
            endTime=(clock.now + timedelta(hours=1)).isoformat(),
        )
        response = await client.put(f"{SCHEDULE}/{schedule['id']}", json={"endTime": None}, headers=alice["headers"])
        updated = response.json()["schedule"]
        assert updated["endTime"] is None
        assert updated["plannedDuration"] is None

    async def test_shrinking_the_plan_completes_it(self, client: AsyncClient, alice: dict, clock) -> None:
        start = clock.now
        schedule = await _create(
            client,
            alice,
            title="Plan",
            subject="Maths",
            startTime=start.isoformat(),
            endTime=(start + timedelta(hours=2)).isoformat(),
        )
        clock.advance(hours=1)
        await _study_for(client, alice, clock, schedule["id"], minutes=60)

        response = await client.put(
            f"{SCHEDULE}/{schedule['id']}",
            json={"endTime": (start + timedelta(hours=1)).isoformat()},
            headers=alice["headers"],
        )
        assert response.json()["schedule"]["completed"] is True

        response = await client.put(
            f"{SCHEDULE}/{schedule['id']}",
            json={"endTime": (start + timedelta(hours=3)).isoformat()},
            headers=alice["headers"],
        )
        assert response.json()["schedule"]["completed"] is True, "completion is never revoked"

    async def test_update_into_invalid_interval(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(client, alice, title="Plan", subject="Maths", startTime=clock.now.isoformat())
        response = await client.put(
            f"{SCHEDULE}/{schedule['id']}",
            json={"endTime": (clock.now - timedelta(hours=1)).isoformat()},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    async def test_update_unknown_or_foreign(self, client: AsyncClient, alice: dict, bob: dict, clock) -> None:
        schedule = await _create(client, alice, title="Plan", subject="Maths", startTime=clock.now.isoformat())
        assert (await client.put(f"{SCHEDULE}/999", json={"title": "x"}, headers=alice["headers"])).status_code == 404
        response = await client.put(f"{SCHEDULE}/{schedule['id']}", json={"title": "x"}, headers=bob["headers"])
        assert response.status_code == 404


class TestDeleteSchedule:
    async def test_delete(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(client, alice, title="Plan", subject="Maths", startTime=clock.now.isoformat())

        response = await client.delete(f"{SCHEDULE}/{schedule['id']}", headers=alice["headers"])
        assert response.status_code == 200
        assert (await client.get(SCHEDULES, headers=alice["headers"])).json()["schedules"] == []

        response = await client.delete(f"{SCHEDULE}/{schedule['id']}", headers=alice["headers"])
        assert response.status_code == 404

    async def test_delete_keeps_recorded_sessions(self, client: AsyncClient, alice: dict, clock) -> None:
        schedule = await _create(client, alice, title="Plan", subject="Maths", startTime=clock.now.isoformat())
        clock.advance(minutes=30)
        await _study_for(client, alice, clock, schedule["id"], minutes=30)

        await client.delete(f"{SCHEDULE}/{schedule['id']}", headers=alice["headers"])
        sessions = (await client.get("/api/v1/study/sessions", headers=alice["headers"])).json()
        assert sessions["total"] == 1
