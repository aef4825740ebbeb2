from __future__ import annotations

import sys
import uuid
from pathlib import Path

from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from main import app  # noqa: E402
from utils.datetime_utils import WEEKDAY_NAMES, today_for_tz, weekday_name  # noqa: E402


def _register(client: TestClient, timezone: str = "UTC") -> str:
    username = f"learner_{uuid.uuid4().hex[:8]}"
    resp = client.post(
        "/api/auth/register",
        json={"username": username, "password": "Learn!Pass123", "display_name": "Learner", "timezone": timezone},
    )
    assert resp.status_code == 201
    return username


def _objective(client: TestClient, title: str, minutes: int = 30) -> int:
    resp = client.post("/api/objectives", json={"title": title, "category": "Study", "estimated_minutes": minutes})
    assert resp.status_code == 201
    return resp.json()["id"]


def _plan_for_today(client: TestClient, *objective_ids: int) -> dict:
    today_name = weekday_name(today_for_tz("UTC"))
    weekly = [
        {
            "day": name,
            "items": [{"objective_id": oid, "duration_minutes": 30} for oid in objective_ids] if name == today_name else [],
        }
        for name in WEEKDAY_NAMES
    ]
    resp = client.post("/api/schedules", json={"name": "My week", "weekly_schedule": weekly})
    assert resp.status_code == 201
    return resp.json()


def test_requests_without_session_are_rejected():
    client = TestClient(app)
    assert client.get("/api/progress/daily").status_code == 401
    assert client.get("/api/analytics/streak").status_code == 401


def test_daily_read_fills_todays_plan_and_completion_flows_into_streak():
    client = TestClient(app)
    _register(client)
    reading = _objective(client, "Reading", minutes=40)
    drills = _objective(client, "Drills")
    schedule = _plan_for_today(client, reading, drills)
    assert schedule["is_default"] is True

    daily = client.get("/api/progress/daily")
    assert daily.status_code == 200
    entries = daily.json()["data"]
    assert sorted(e["objective_id"] for e in entries) == sorted([reading, drills])
    assert {e["status"] for e in entries} == {"pending"}

    # Reading again must not create anything new.
    again = client.get("/api/progress/daily").json()["data"]
    assert len(again) == 2

    done = client.post("/api/progress", json={"objective_id": reading, "status": "completed"})
    assert done.status_code == 200
    assert done.json()["data"]["time_spent"] == 40

    skipped = client.post("/api/progress/skip", json={"objective_id": drills})
    assert skipped.status_code == 200
    assert skipped.json()["data"]["status"] == "skipped"

    streak = client.get("/api/analytics/streak")
    assert streak.status_code == 200
    assert streak.json()["current_streak"] == 1

    notes = client.get("/api/notifications").json()
    kinds = {n["payload"].get("kind") for n in notes["data"]}
    assert "task_completed" in kinds
    assert notes["unread_count"] == len(notes["data"])

    read_all = client.put("/api/notifications/read-all")
    assert read_all.status_code == 200
    assert client.get("/api/notifications").json()["unread_count"] == 0


def test_manual_sync_and_reminder_trigger():
    client = TestClient(app)
    _register(client)
    reading = _objective(client, "Reading")
    _plan_for_today(client, reading)

    sync = client.post("/api/progress/sync")
    assert sync.status_code == 200
    assert sync.json()["status"] == "ok"
    assert sync.json()["failed_days"] == []

    reminder = client.post("/api/notifications/trigger-reminder")
    assert reminder.status_code == 200
    body = reminder.json()
    assert body["sent"] is True
    assert "Reading" in body["data"]["message"]


def test_progress_validation_errors():
    client = TestClient(app)
    _register(client)
    reading = _objective(client, "Reading")

    assert client.post("/api/progress", json={"objective_id": reading, "status": "finished"}).status_code == 400
    assert client.post("/api/progress", json={"objective_id": 999999, "status": "completed"}).status_code == 404
    assert client.get("/api/progress/daily", params={"date": "not-a-date"}).status_code == 400
    assert client.get("/api/progress/range").status_code == 400
    assert (
        client.get("/api/progress/range", params={"start_date": "2024-02-10", "end_date": "2024-02-01"}).status_code
        == 400
    )


def test_schedule_rejects_unknown_day_and_foreign_objective():
    client = TestClient(app)
    _register(client)

    bad_day = client.post(
        "/api/schedules",
        json={"name": "Broken", "weekly_schedule": [{"day": "someday", "items": []}]},
    )
    assert bad_day.status_code == 400

    foreign = client.post(
        "/api/schedules",
        json={"name": "Broken", "weekly_schedule": [{"day": "monday", "items": [{"objective_id": 999999}]}]},
    )
    assert foreign.status_code == 400


def test_settings_timezone_validation():
    client = TestClient(app)
    _register(client, timezone="America/Edmonton")

    current = client.get("/api/settings").json()
    assert current["timezone"] == "America/Edmonton"
    assert current["reminders_enabled"] is True

    assert client.put("/api/settings", json={"timezone": "Nowhere/Special"}).status_code == 400
    updated = client.put("/api/settings", json={"timezone": "Asia/Tokyo", "reminders_enabled": False})
    assert updated.status_code == 200
    assert updated.json() == {"timezone": "Asia/Tokyo", "reminders_enabled": False}


def test_analytics_endpoints_respond():
    client = TestClient(app)
    _register(client)
    reading = _objective(client, "Reading")
    _plan_for_today(client, reading)

    assert client.get("/api/analytics/overall", params={"period": "weekly"}).status_code == 200
    assert client.get("/api/analytics/overall", params={"period": "yearly"}).status_code == 400
    assert client.get("/api/analytics/by-objective").json()["count"] == 1
    assert client.get("/api/analytics/by-category").status_code == 200
    assert client.get("/api/analytics/daily").status_code == 200
    assert len(client.get("/api/analytics/weekly-chart").json()["data"]) == 7


def test_bearer_token_works_and_logout_revokes_it():
    client = TestClient(app)
    username = f"learner_{uuid.uuid4().hex[:8]}"
    resp = client.post(
        "/api/auth/register",
        json={"username": username, "password": "Learn!Pass123", "display_name": "Learner"},
    )
    assert resp.status_code == 201
    token = resp.json()["access_token"]
    bearer = {"Authorization": f"Bearer {token}"}

    # A client without the cookie can still authenticate with the header.
    assert TestClient(app).get("/api/auth/me", headers=bearer).status_code == 200

    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/auth/me").status_code == 401
    assert TestClient(app).get("/api/auth/me", headers=bearer).status_code == 401

    again = client.post("/api/auth/login", json={"username": username, "password": "Learn!Pass123"})
    assert again.status_code == 200
    assert client.get("/api/auth/me").json()["username"] == username


def test_logout_without_session_is_harmless():
    assert TestClient(app).post("/api/auth/logout").status_code == 200


def test_register_rejects_password_longer_than_bcrypt_accepts():
    resp = TestClient(app).post(
        "/api/auth/register",
        json={"username": f"learner_{uuid.uuid4().hex[:8]}", "password": "\u00e9" * 40, "display_name": "Learner"},
    )
    assert resp.status_code == 400


def test_todays_schedule_follows_the_default_template():
    client = TestClient(app)
    _register(client)
    assert client.get("/api/schedules/today").status_code == 404

    reading = _objective(client, "Reading")
    drills = _objective(client, "Drills")
    schedule = _plan_for_today(client, reading)
    today_name = weekday_name(today_for_tz("UTC"))

    today = client.get("/api/schedules/today")
    assert today.status_code == 200
    body = today.json()
    assert body["day"] == today_name
    assert body["schedule_id"] == schedule["id"]
    assert [i["objective_id"] for i in body["schedule"]["items"]] == [reading]

    swapped = client.put(
        f"/api/schedules/{schedule['id']}/day/{today_name}",
        json={"items": [{"objective_id": reading}, {"objective_id": drills}]},
    )
    assert swapped.status_code == 200
    assert len(swapped.json()["weekly_schedule"]) == 7
    items = client.get("/api/schedules/today").json()["schedule"]["items"]
    assert [i["objective_id"] for i in items] == [reading, drills]
    daily = client.get("/api/progress/daily").json()["data"]
    assert sorted(e["objective_id"] for e in daily) == sorted([reading, drills])

    assert client.put(f"/api/schedules/{schedule['id']}/day/funday", json={"items": []}).status_code == 400
    assert client.put("/api/schedules/999999/day/monday", json={"items": []}).status_code == 404


def test_categories_and_objective_progress():
    client = TestClient(app)
    _register(client)
    reading = _objective(client, "Reading")
    german = client.post("/api/objectives", json={"title": "German", "category": "Languages"}).json()["id"]
    assert client.get("/api/objectives/categories/all").json()["data"] == ["Languages", "Study"]

    assert client.delete(f"/api/objectives/{german}").status_code == 200
    assert client.get("/api/objectives/categories/all").json()["data"] == ["Study"]

    _plan_for_today(client, reading)
    resp = client.get(f"/api/objectives/{reading}/progress")
    assert resp.status_code == 200
    body = resp.json()
    assert body["title"] == "Reading"
    assert [p["status"] for p in body["progress"]] == ["pending"]
    assert body["progress"][0]["date"] == today_for_tz("UTC").isoformat()

    assert client.get("/api/objectives/999999/progress").status_code == 404
    assert client.get(f"/api/objectives/{reading}/progress", params={"start_date": "soon"}).status_code == 400


def test_health():
    client = TestClient(app)
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
