from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import PROGRESS_STATUSES, DailyProgress, LearningObjective, User
from services.notification_service import AllTasksDone, StreakMilestone, TaskCompleted, emit_event
from services.objective_service import get_objective
from services.progress_sync_service import insert_if_absent
from services.streak_service import compute_streak
from utils.datetime_utils import day_key, today_for_tz, user_timezone


REMARKS_MAX = 1000
NOTES_MAX = 2000


def _today(user: User) -> date:
    return today_for_tz(user_timezone(user))


def _find(db: Session, user_id: int, objective_id: int, day: date) -> DailyProgress | None:
    return (
        db.query(DailyProgress)
        .filter(
            DailyProgress.user_id == user_id,
            DailyProgress.objective_id == objective_id,
            DailyProgress.progress_date == day_key(day),
        )
        .first()
    )


def _clean_text(raw: str | None, limit: int) -> str:
    return str(raw).strip()[:limit]


def _claim_row(db: Session, user_id: int, objective_id: int, day: date) -> DailyProgress:
    """Load the (user, objective, day) row, inserting a blank one if absent.

    The insert ignores a row that a concurrent sync created first.
    """
    row = _find(db, user_id, objective_id, day)
    if row is not None:
        return row
    now = datetime.utcnow()
    insert_if_absent(
        db,
        {
            "user_id": user_id,
            "objective_id": objective_id,
            "progress_date": day_key(day),
            "status": "pending",
            "time_spent": 0,
            "notes": "",
            "created_at": now,
            "updated_at": now,
        },
    )
    return _find(db, user_id, objective_id, day)


def record_progress(
    db: Session,
    user: User,
    *,
    objective_id: int,
    status: str,
    day: date | None = None,
    remarks: str | None = None,
    notes: str | None = None,
    time_spent: int | None = None,
) -> DailyProgress:
    """Create or overwrite the user's record for (objective, day)."""
    norm_status = str(status or "").strip().lower()
    if norm_status not in PROGRESS_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(PROGRESS_STATUSES)}")
    if time_spent is not None and int(time_spent) < 0:
        raise ValueError("time_spent must be zero or more minutes")
    objective = get_objective(db, user, objective_id)
    target_day = day or _today(user)

    row = _claim_row(db, user.id, objective.id, target_day)

    row.status = norm_status
    if remarks is not None:
        row.remarks = _clean_text(remarks, REMARKS_MAX)
    if notes is not None:
        row.notes = _clean_text(notes, NOTES_MAX)
    if time_spent is not None:
        row.time_spent = int(time_spent)

    if norm_status == "completed":
        row.completed_at = datetime.now(timezone.utc)
        if time_spent is None and not row.time_spent:
            row.time_spent = int(objective.estimated_minutes or 0)
    else:
        row.completed_at = None
    db.flush()

    if norm_status == "completed":
        _emit_completion_events(db, user, objective, target_day)
    return row


def _emit_completion_events(db: Session, user: User, objective: LearningObjective, day: date) -> None:
    emit_event(db, TaskCompleted(user_id=user.id, objective_id=objective.id, objective_title=objective.title, day=day))

    today = _today(user)
    if day != today:
        return
    todays = db.query(DailyProgress).filter(DailyProgress.user_id == user.id, DailyProgress.progress_date == day_key(today)).all()
    if todays and all(r.status in {"completed", "skipped"} for r in todays):
        emit_event(db, AllTasksDone(user_id=user.id, task_count=len(todays), day=today))

    streak = compute_streak(db, user, reference_day=today)
    if streak.current in set(settings.STREAK_MILESTONES):
        emit_event(db, StreakMilestone(user_id=user.id, days=streak.current, day=today))


def skip_progress(
    db: Session,
    user: User,
    *,
    objective_id: int,
    day: date | None = None,
    remarks: str | None = None,
) -> DailyProgress:
    return record_progress(
        db,
        user,
        objective_id=objective_id,
        status="skipped",
        day=day,
        remarks=remarks or "Skipped by user",
    )


def list_daily_progress(db: Session, user: User, day: date | None = None) -> list[DailyProgress]:
    target = day or _today(user)
    return (
        db.query(DailyProgress)
        .filter(DailyProgress.user_id == user.id, DailyProgress.progress_date == day_key(target))
        .order_by(DailyProgress.id.asc())
        .all()
    )


def list_progress_range(db: Session, user: User, start: date, end: date) -> list[DailyProgress]:
    if start > end:
        raise ValueError("start_date must be on or before end_date")
    return (
        db.query(DailyProgress)
        .filter(
            DailyProgress.user_id == user.id,
            DailyProgress.progress_date >= day_key(start),
            DailyProgress.progress_date <= day_key(end),
        )
        .order_by(DailyProgress.progress_date.desc(), DailyProgress.id.asc())
        .all()
    )


def list_objective_progress(
    db: Session,
    user: User,
    objective_id: int,
    *,
    start: date | None = None,
    end: date | None = None,
) -> list[DailyProgress]:
    query = db.query(DailyProgress).filter(
        DailyProgress.user_id == user.id,
        DailyProgress.objective_id == objective_id,
    )
    if start and end:
        query = query.filter(
            DailyProgress.progress_date >= day_key(start),
            DailyProgress.progress_date <= day_key(end),
        )
    return query.order_by(DailyProgress.progress_date.desc()).all()


def delete_progress(db: Session, user: User, progress_id: int) -> None:
    row = db.query(DailyProgress).filter(DailyProgress.user_id == user.id, DailyProgress.id == progress_id).first()
    if not row:
        raise ValueError("Progress entry not found")
    db.delete(row)
    db.flush()


def serialize_progress(row: DailyProgress) -> dict[str, Any]:
    objective = row.objective
    return {
        "id": row.id,
        "objective_id": row.objective_id,
        "objective": {
            "title": objective.title,
            "category": objective.category,
            "color": objective.color,
            "icon": objective.icon,
            "estimated_minutes": objective.estimated_minutes,
        }
        if objective
        else None,
        "date": row.progress_date,
        "status": row.status,
        "remarks": row.remarks,
        "notes": row.notes or "",
        "time_spent": int(row.time_spent or 0),
        "completed_at": row.completed_at.isoformat() if row.completed_at else None,
    }
