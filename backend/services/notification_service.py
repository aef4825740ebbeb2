from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import DailyProgress, LearningObjective, Notification, User
from utils.datetime_utils import day_key, local_now, user_timezone

logger = logging.getLogger(__name__)

DEDUPE_LOOKBACK_DAYS = 31


@dataclass(frozen=True)
class ReminderDue:
    user_id: int
    pending_item_titles: tuple[str, ...]
    local_day: date
    local_hour: int

    def render(self) -> tuple[str, str, str, dict[str, Any]]:
        count = len(self.pending_item_titles)
        shown = ", ".join(self.pending_item_titles[:3])
        extra = f" and {count - 3} more" if count > 3 else ""
        plural = "s" if count != 1 else ""
        late = self.local_hour >= settings.LATE_REMINDER_HOUR_LOCAL
        return (
            "reminder",
            "Late Night Reminder" if late else "Pending Tasks Reminder",
            f"You have {count} pending task{plural} today: {shown}{extra}. Keep going!",
            {
                "kind": "reminder_due",
                "pending_count": count,
                "pending_titles": list(self.pending_item_titles),
                "dedupe_key": f"reminder:{day_key(self.local_day)}:{self.local_hour}",
            },
        )


@dataclass(frozen=True)
class WeeklySummary:
    user_id: int
    completed_count: int
    week_start: date
    week_end: date

    def render(self) -> tuple[str, str, str, dict[str, Any]]:
        return (
            "summary",
            "Your Weekly Summary",
            f"You completed {self.completed_count} task{'s' if self.completed_count != 1 else ''} "
            f"between {self.week_start.isoformat()} and {self.week_end.isoformat()}.",
            {
                "kind": "weekly_summary",
                "completed_count": self.completed_count,
                "week_start": self.week_start.isoformat(),
                "week_end": self.week_end.isoformat(),
                "dedupe_key": f"weekly_summary:{self.week_start.isoformat()}",
            },
        )


@dataclass(frozen=True)
class TaskCompleted:
    user_id: int
    objective_id: int
    objective_title: str
    day: date

    def render(self) -> tuple[str, str, str, dict[str, Any]]:
        return (
            "success",
            "Task Completed!",
            f'Great work! You completed "{self.objective_title}".',
            {
                "kind": "task_completed",
                "objective_id": self.objective_id,
                "dedupe_key": f"task_completed:{self.objective_id}:{day_key(self.day)}",
            },
        )


@dataclass(frozen=True)
class AllTasksDone:
    user_id: int
    task_count: int
    day: date

    def render(self) -> tuple[str, str, str, dict[str, Any]]:
        return (
            "success",
            "All Tasks Done!",
            f"You have completed all {self.task_count} tasks for today. Amazing consistency!",
            {"kind": "all_tasks_done", "dedupe_key": f"all_done:{day_key(self.day)}"},
        )


@dataclass(frozen=True)
class StreakMilestone:
    user_id: int
    days: int
    day: date

    def render(self) -> tuple[str, str, str, dict[str, Any]]:
        return (
            "success",
            f"{self.days}-Day Streak!",
            f"Incredible! You have maintained a {self.days}-day learning streak. Keep it up!",
            {"kind": "streak_milestone", "days": self.days, "dedupe_key": f"streak:{self.days}:{day_key(self.day)}"},
        )


def _safe_json_loads(raw: str | None, fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback


def _already_emitted(db: Session, user_id: int, dedupe_key: str) -> bool:
    since = datetime.utcnow() - timedelta(days=DEDUPE_LOOKBACK_DAYS)
    recent = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.created_at >= since)
        .all()
    )
    for row in recent:
        payload = _safe_json_loads(row.payload, {})
        if isinstance(payload, dict) and str(payload.get("dedupe_key", "")) == dedupe_key:
            return True
    return False


def emit_event(db: Session, event) -> Notification | None:
    """Hand an event to the notification sink. Never raises.

    The row is added to ``db`` and persists with the caller's commit.
    """
    try:
        category, title, message, payload = event.render()
        dedupe_key = str(payload.get("dedupe_key") or "")
        if dedupe_key and _already_emitted(db, event.user_id, dedupe_key):
            return None
        row = Notification(
            user_id=event.user_id,
            category=category,
            title=title,
            message=message,
            payload=json.dumps(payload, ensure_ascii=True),
        )
        db.add(row)
        return row
    except Exception:
        logger.exception("Failed to emit %s for user %s", type(event).__name__, getattr(event, "user_id", None))
        return None


def pending_titles_for_day(db: Session, user_id: int, day: date) -> list[str]:
    rows = (
        db.query(LearningObjective.title)
        .join(DailyProgress, DailyProgress.objective_id == LearningObjective.id)
        .filter(
            DailyProgress.user_id == user_id,
            DailyProgress.progress_date == day_key(day),
            DailyProgress.status == "pending",
        )
        .order_by(DailyProgress.id.asc())
        .all()
    )
    return [str(row[0] or "Unnamed task") for row in rows]


def pending_reminder(db: Session, user: User, *, now: datetime | None = None) -> ReminderDue | None:
    local = local_now(user_timezone(user), now)
    titles = pending_titles_for_day(db, user.id, local.date())
    if not titles:
        return None
    return ReminderDue(
        user_id=user.id,
        pending_item_titles=tuple(titles),
        local_day=local.date(),
        local_hour=local.hour,
    )


def weekly_summary(db: Session, user: User, *, now: datetime | None = None) -> WeeklySummary:
    """Completed records over the seven local days before today."""
    today = local_now(user_timezone(user), now).date()
    week_start = today - timedelta(days=7)
    week_end = today - timedelta(days=1)
    completed = (
        db.query(DailyProgress)
        .filter(
            DailyProgress.user_id == user.id,
            DailyProgress.status == "completed",
            DailyProgress.progress_date >= day_key(week_start),
            DailyProgress.progress_date <= day_key(week_end),
        )
        .count()
    )
    return WeeklySummary(user_id=user.id, completed_count=int(completed), week_start=week_start, week_end=week_end)


def list_notifications(db: Session, user: User) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .all()
    )


def mark_notification_read(db: Session, user: User, notification_id: int) -> Notification:
    row = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.id == notification_id)
        .first()
    )
    if not row:
        raise ValueError("Notification not found")
    row.is_read = True
    row.read_at = datetime.now(timezone.utc)
    db.flush()
    return row


def mark_all_read(db: Session, user: User) -> int:
    return int(
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update(
            {Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        or 0
    )


def serialize_notification(row: Notification) -> dict[str, Any]:
    return {
        "id": row.id,
        "category": row.category,
        "title": row.title,
        "message": row.message,
        "payload": _safe_json_loads(row.payload, {}),
        "is_read": bool(row.is_read),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
