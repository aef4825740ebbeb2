from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base, install_sqlite_pragmas  # noqa: E402
from db.models import (  # noqa: E402
    DailyProgress,
    LearningObjective,
    Notification,
    Schedule,
    ScheduleDay,
    ScheduleItem,
    User,
    UserSettings,
)
from services import reminder_scheduler  # noqa: E402
from services.reminder_scheduler import run_hourly_tick  # noqa: E402


def _factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'tick.db'}", connect_args={"check_same_thread": False})
    install_sqlite_pragmas(engine)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _seed_user(db, username: str, *, tz: str = "UTC", reminders: bool = True, titles=("Python", "SQL", "Piano", "Chess")):
    user = User(username=username, username_normalized=username, password_hash="hash", display_name=username)
    user.settings = UserSettings(timezone=tz, reminders_enabled=reminders)
    db.add(user)
    db.flush()
    objectives = [LearningObjective(user_id=user.id, title=t) for t in titles]
    db.add_all(objectives)
    db.flush()
    schedule = Schedule(
        user_id=user.id,
        name="Plan",
        is_default=True,
        is_active=True,
        created_at=datetime(2024, 1, 1, 0, 0),
    )
    # Every weekday runs every objective.
    schedule.days = [
        ScheduleDay(day=name, items=[ScheduleItem(objective_id=o.id) for o in objectives])
        for name in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
    ]
    db.add(schedule)
    db.commit()
    return user.id


def _notifications(factory, user_id: int) -> list[Notification]:
    db = factory()
    try:
        return (
            db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.id.asc())
            .all()
        )
    finally:
        db.close()


def test_reminder_at_local_hour_syncs_then_lists_pending_items(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    user_id = _seed_user(db, "evening_user")
    db.close()

    # Wednesday 17:00 UTC.
    report = run_hourly_tick(datetime(2024, 1, 17, 17, 0, tzinfo=timezone.utc), session_factory=factory)

    assert report.users_checked == 1
    assert report.reminders == 1
    assert report.failures == 0
    rows = _notifications(factory, user_id)
    assert len(rows) == 1
    assert rows[0].category == "reminder"
    assert rows[0].title == "Pending Tasks Reminder"
    assert rows[0].message == "You have 4 pending tasks today: Python, SQL, Piano and 1 more. Keep going!"
    payload = json.loads(rows[0].payload)
    assert payload["pending_count"] == 4
    assert payload["dedupe_key"] == "reminder:2024-01-17:17"

    db = factory()
    assert db.query(DailyProgress).filter(DailyProgress.progress_date == "2024-01-17").count() == 4
    db.close()


def test_same_hour_tick_does_not_repeat_reminder(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    user_id = _seed_user(db, "repeat_user")
    db.close()
    instant = datetime(2024, 1, 17, 17, 0, tzinfo=timezone.utc)

    run_hourly_tick(instant, session_factory=factory)
    second = run_hourly_tick(instant, session_factory=factory)

    assert second.reminders == 0
    assert len(_notifications(factory, user_id)) == 1


def test_late_reminder_title(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    user_id = _seed_user(db, "late_user", titles=("Python",))
    db.close()

    run_hourly_tick(datetime(2024, 1, 17, 22, 0, tzinfo=timezone.utc), session_factory=factory)

    rows = _notifications(factory, user_id)
    assert [r.title for r in rows] == ["Late Night Reminder"]
    assert rows[0].message == "You have 1 pending task today: Python. Keep going!"


def test_reminder_hour_is_local_to_the_user(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    utc_user = _seed_user(db, "utc_user")
    tokyo_user = _seed_user(db, "tokyo_user", tz="Asia/Tokyo")
    db.close()

    # 08:00 UTC is 17:00 in Tokyo and nowhere near a UTC reminder hour.
    report = run_hourly_tick(datetime(2024, 1, 17, 8, 0, tzinfo=timezone.utc), session_factory=factory)

    assert report.users_checked == 2
    assert report.reminders == 1
    assert _notifications(factory, utc_user) == []
    assert len(_notifications(factory, tokyo_user)) == 1


def test_no_reminder_when_everything_is_done(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    user_id = _seed_user(db, "done_user", titles=("Python",))
    objective_id = db.query(LearningObjective.id).filter(LearningObjective.user_id == user_id).scalar()
    db.add(DailyProgress(user_id=user_id, objective_id=objective_id, progress_date="2024-01-17", status="completed"))
    db.commit()
    db.close()

    report = run_hourly_tick(datetime(2024, 1, 17, 17, 0, tzinfo=timezone.utc), session_factory=factory)

    assert report.reminders == 0
    assert _notifications(factory, user_id) == []


def test_users_with_reminders_disabled_are_skipped(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    user_id = _seed_user(db, "quiet_user", reminders=False)
    db.close()

    report = run_hourly_tick(datetime(2024, 1, 17, 17, 0, tzinfo=timezone.utc), session_factory=factory)

    assert report.users_checked == 0
    assert _notifications(factory, user_id) == []


def test_weekly_summary_on_monday_morning(tmp_path):
    factory = _factory(tmp_path)
    db = factory()
    user_id = _seed_user(db, "summary_user", titles=("Python",))
    objective_id = db.query(LearningObjective.id).filter(LearningObjective.user_id == user_id).scalar()
    for day in ("2024-01-08", "2024-01-10", "2024-01-14", "2024-01-15"):
        db.add(DailyProgress(user_id=user_id, objective_id=objective_id, progress_date=day, status="completed"))
    db.commit()
    db.close()

    # Monday 09:00 UTC.
    report = run_hourly_tick(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc), session_factory=factory)

    assert report.summaries == 1
    rows = _notifications(factory, user_id)
    assert [r.category for r in rows] == ["summary"]
    payload = json.loads(rows[0].payload)
    assert payload["completed_count"] == 3
    assert payload["week_start"] == "2024-01-08"
    assert payload["week_end"] == "2024-01-14"


def test_scheduler_respects_config(monkeypatch):
    monkeypatch.setattr(reminder_scheduler.settings, "SCHEDULER_ENABLED", False)
    assert reminder_scheduler.start_scheduler() is None


def test_scheduler_registers_single_hourly_job(monkeypatch):
    monkeypatch.setattr(reminder_scheduler.settings, "SCHEDULER_ENABLED", True)
    scheduler = reminder_scheduler.start_scheduler()
    try:
        assert scheduler is not None
        assert reminder_scheduler.start_scheduler() is scheduler
        job = scheduler.get_job(reminder_scheduler.HOURLY_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
    finally:
        reminder_scheduler.shutdown_scheduler()
