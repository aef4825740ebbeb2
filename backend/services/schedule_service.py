from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from db.models import LearningObjective, Schedule, ScheduleDay, ScheduleItem, User
from utils.datetime_utils import WEEKDAY_NAMES, today_for_tz, user_timezone, weekday_name


def get_default_template(db: Session, user_id: int) -> Schedule | None:
    return (
        db.query(Schedule)
        .filter(
            Schedule.user_id == user_id,
            Schedule.is_default.is_(True),
            Schedule.is_active.is_(True),
        )
        .order_by(Schedule.updated_at.desc(), Schedule.id.desc())
        .first()
    )


def scheduled_objective_ids(schedule: Schedule, day: date) -> list[int]:
    """Objectives scheduled on a calendar day, in template order, without repeats.

    Inactive days, days missing from the template and soft-deleted
    objectives all contribute nothing.
    """
    name = weekday_name(day)
    seen: set[int] = set()
    ordered: list[int] = []
    for schedule_day in schedule.days:
        if schedule_day.day != name or not schedule_day.is_active:
            continue
        for item in schedule_day.items:
            objective = item.objective
            if objective is not None and not objective.is_active:
                continue
            oid = int(item.objective_id)
            if oid not in seen:
                seen.add(oid)
                ordered.append(oid)
    return ordered


def _normalize_day_name(raw: str) -> str:
    name = str(raw or "").strip().lower()
    if name not in WEEKDAY_NAMES:
        raise ValueError(f"Unknown day: {raw}")
    return name


def _owned_objective_ids(db: Session, user_id: int) -> set[int]:
    rows = db.query(LearningObjective.id).filter(LearningObjective.user_id == user_id).all()
    return {int(row[0]) for row in rows}


def _build_days(db: Session, user: User, weekly_schedule: list[dict[str, Any]]) -> list[ScheduleDay]:
    owned = _owned_objective_ids(db, user.id)
    days: list[ScheduleDay] = []
    seen_days: set[str] = set()
    for entry in weekly_schedule:
        name = _normalize_day_name(entry.get("day", ""))
        if name in seen_days:
            raise ValueError(f"Day listed twice: {name}")
        seen_days.add(name)
        schedule_day = ScheduleDay(day=name, is_active=bool(entry.get("is_active", True)))
        for item in entry.get("items") or []:
            objective_id = int(item.get("objective_id") or 0)
            if objective_id not in owned:
                raise ValueError(f"Learning objective not found: {objective_id}")
            schedule_day.items.append(
                ScheduleItem(
                    objective_id=objective_id,
                    start_time=item.get("start_time"),
                    end_time=item.get("end_time"),
                    duration_minutes=int(item.get("duration_minutes") or 60),
                )
            )
        days.append(schedule_day)
    return days


def _demote_other_defaults(db: Session, user_id: int, keep_id: int) -> None:
    (
        db.query(Schedule)
        .filter(Schedule.user_id == user_id, Schedule.id != keep_id, Schedule.is_default.is_(True))
        .update({Schedule.is_default: False}, synchronize_session=False)
    )


def list_schedules(db: Session, user: User) -> list[Schedule]:
    return (
        db.query(Schedule)
        .filter(Schedule.user_id == user.id, Schedule.is_active.is_(True))
        .order_by(Schedule.is_default.desc(), Schedule.created_at.desc())
        .all()
    )


def get_schedule(db: Session, user: User, schedule_id: int) -> Schedule:
    row = db.query(Schedule).filter(Schedule.user_id == user.id, Schedule.id == schedule_id).first()
    if not row:
        raise ValueError("Schedule not found")
    return row


def create_schedule(
    db: Session,
    user: User,
    *,
    name: str,
    description: str | None = None,
    weekly_schedule: list[dict[str, Any]] | None = None,
    is_default: bool = False,
) -> Schedule:
    clean_name = " ".join(str(name or "").split())
    if not clean_name:
        raise ValueError("Schedule name is required")
    has_default = get_default_template(db, user.id) is not None
    row = Schedule(
        user_id=user.id,
        name=clean_name[:100],
        description=(description or "").strip()[:500] or None,
        is_default=bool(is_default) or not has_default,
        is_active=True,
    )
    row.days = _build_days(db, user, weekly_schedule or [])
    db.add(row)
    db.flush()
    if row.is_default:
        _demote_other_defaults(db, user.id, row.id)
    return row


def replace_weekly_schedule(
    db: Session,
    user: User,
    schedule_id: int,
    *,
    weekly_schedule: list[dict[str, Any]],
    name: str | None = None,
    description: str | None = None,
) -> Schedule:
    row = get_schedule(db, user, schedule_id)
    if name is not None:
        clean_name = " ".join(name.split())
        if not clean_name:
            raise ValueError("Schedule name is required")
        row.name = clean_name[:100]
    if description is not None:
        row.description = description.strip()[:500] or None
    row.days = _build_days(db, user, weekly_schedule)
    db.flush()
    return row


def make_default(db: Session, user: User, schedule_id: int) -> Schedule:
    row = get_schedule(db, user, schedule_id)
    row.is_default = True
    row.is_active = True
    db.flush()
    _demote_other_defaults(db, user.id, row.id)
    return row


def delete_schedule(db: Session, user: User, schedule_id: int) -> None:
    row = get_schedule(db, user, schedule_id)
    db.delete(row)
    db.flush()


def replace_day(
    db: Session,
    user: User,
    schedule_id: int,
    day: str,
    *,
    items: list[dict[str, Any]],
    is_active: bool = True,
) -> Schedule:
    """Swap one weekday of a template, leaving the other six untouched."""
    name = _normalize_day_name(day)
    row = get_schedule(db, user, schedule_id)
    (replacement,) = _build_days(db, user, [{"day": name, "is_active": is_active, "items": items}])
    row.days = [d for d in row.days if d.day != name] + [replacement]
    db.flush()
    return row


def today_schedule(db: Session, user: User) -> dict[str, Any]:
    row = get_default_template(db, user.id)
    if not row:
        raise ValueError("No default schedule")
    name = weekday_name(today_for_tz(user_timezone(user)))
    today = next((d for d in row.days if d.day == name), None)
    return {
        "day": name,
        "schedule_id": row.id,
        "schedule": serialize_day(today) if today else {"day": name, "is_active": False, "items": []},
    }


def serialize_day(schedule_day: ScheduleDay) -> dict[str, Any]:
    return {
        "day": schedule_day.day,
        "is_active": bool(schedule_day.is_active),
        "items": [
            {
                "objective_id": item.objective_id,
                "title": item.objective.title if item.objective else None,
                "start_time": item.start_time,
                "end_time": item.end_time,
                "duration_minutes": item.duration_minutes,
            }
            for item in schedule_day.items
        ],
    }


def serialize_schedule(row: Schedule) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "is_default": bool(row.is_default),
        "is_active": bool(row.is_active),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "weekly_schedule": [serialize_day(d) for d in row.days],
    }
