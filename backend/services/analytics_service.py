from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable

from sqlalchemy.orm import Session

from db.models import PROGRESS_STATUSES, DailyProgress, LearningObjective, User
from utils.datetime_utils import (
    day_key,
    end_of_month,
    end_of_week,
    iter_days,
    start_of_month,
    start_of_week,
    today_for_tz,
    user_timezone,
    weekday_name,
)

PERIODS = {"daily", "weekly", "monthly", "all"}


def _today(user: User) -> date:
    return today_for_tz(user_timezone(user))


def _period_window(period: str, today: date) -> tuple[date, date] | None:
    if period == "daily":
        return today, today
    if period == "weekly":
        return start_of_week(today), end_of_week(today)
    if period == "monthly":
        return start_of_month(today), end_of_month(today)
    return None


def _progress_query(db: Session, user_id: int, window: tuple[date, date] | None):
    query = db.query(DailyProgress).filter(DailyProgress.user_id == user_id)
    if window is not None:
        query = query.filter(
            DailyProgress.progress_date >= day_key(window[0]),
            DailyProgress.progress_date <= day_key(window[1]),
        )
    return query


def _completion_rate(completed: int, total: int) -> float:
    return round((completed / total) * 100.0, 2) if total > 0 else 0.0


def summarize(rows: Iterable[DailyProgress]) -> dict[str, Any]:
    counts = {status: 0 for status in PROGRESS_STATUSES}
    total = 0
    time_spent = 0
    for row in rows:
        total += 1
        counts[str(row.status)] = counts.get(str(row.status), 0) + 1
        time_spent += int(row.time_spent or 0)
    return {
        "total": total,
        **counts,
        "completion_rate": _completion_rate(counts["completed"], total),
        "total_time_spent": time_spent,
        "average_time_per_session": round(time_spent / total) if total > 0 else 0,
    }


def overall_analytics(db: Session, user: User, period: str | None = None) -> dict[str, Any]:
    norm = str(period or "all").strip().lower()
    if norm not in PERIODS:
        raise ValueError("period must be daily, weekly, monthly, or all")
    window = _period_window(norm, _today(user))
    stats = summarize(_progress_query(db, user.id, window).all())
    return {"period": norm, **stats}


def _date_window(start: date | None, end: date | None) -> tuple[date, date] | None:
    if start and end:
        if start > end:
            raise ValueError("start_date must be on or before end_date")
        return start, end
    return None


def _active_objectives(db: Session, user_id: int) -> list[LearningObjective]:
    return (
        db.query(LearningObjective)
        .filter(LearningObjective.user_id == user_id, LearningObjective.is_active.is_(True))
        .order_by(LearningObjective.id.asc())
        .all()
    )


def _rows_by_objective(db: Session, user_id: int, window: tuple[date, date] | None) -> dict[int, list[DailyProgress]]:
    grouped: dict[int, list[DailyProgress]] = {}
    for row in _progress_query(db, user_id, window).all():
        grouped.setdefault(int(row.objective_id), []).append(row)
    return grouped


def analytics_by_objective(
    db: Session,
    user: User,
    start: date | None = None,
    end: date | None = None,
) -> list[dict[str, Any]]:
    grouped = _rows_by_objective(db, user.id, _date_window(start, end))
    result = [
        {
            "objective": {
                "id": objective.id,
                "title": objective.title,
                "category": objective.category,
                "color": objective.color,
                "icon": objective.icon,
            },
            "stats": summarize(grouped.get(int(objective.id), [])),
        }
        for objective in _active_objectives(db, user.id)
    ]
    result.sort(key=lambda item: item["stats"]["completion_rate"], reverse=True)
    return result


def analytics_by_category(
    db: Session,
    user: User,
    start: date | None = None,
    end: date | None = None,
) -> list[dict[str, Any]]:
    grouped = _rows_by_objective(db, user.id, _date_window(start, end))
    categories: dict[str, dict[str, Any]] = {}
    for objective in _active_objectives(db, user.id):
        name = objective.category or "Uncategorized"
        bucket = categories.setdefault(
            name,
            {"category": name, "objectives": [], "total": 0, "completed": 0, "missed": 0,
             "pending": 0, "partial": 0, "skipped": 0, "total_time_spent": 0},
        )
        stats = summarize(grouped.get(int(objective.id), []))
        bucket["objectives"].append(
            {
                "objective_id": objective.id,
                "title": objective.title,
                "total": stats["total"],
                "completed": stats["completed"],
                "missed": stats["missed"],
                "pending": stats["pending"],
                "partial": stats["partial"],
                "skipped": stats["skipped"],
                "time_spent": stats["total_time_spent"],
            }
        )
        for key in ("total", "completed", "missed", "pending", "partial", "skipped"):
            bucket[key] += stats[key]
        bucket["total_time_spent"] += stats["total_time_spent"]

    result = [
        {**bucket, "completion_rate": _completion_rate(bucket["completed"], bucket["total"])}
        for bucket in categories.values()
    ]
    result.sort(key=lambda item: item["completion_rate"], reverse=True)
    return result


def daily_calendar(db: Session, user: User, *, year: int | None = None, month: int | None = None) -> dict[str, Any]:
    """One entry per day of a month, with per-status counts and the day's entries."""
    today = _today(user)
    target_year = int(year or today.year)
    target_month = int(month or today.month)
    if not 1 <= target_month <= 12:
        raise ValueError("month must be between 1 and 12")
    first = date(target_year, target_month, 1)
    last = end_of_month(first)

    days: dict[str, dict[str, Any]] = {}
    for d in iter_days(first, last):
        days[day_key(d)] = {"date": day_key(d), "total": 0, **{s: 0 for s in PROGRESS_STATUSES}, "entries": []}

    rows = (
        _progress_query(db, user.id, (first, last))
        .order_by(DailyProgress.progress_date.asc(), DailyProgress.id.asc())
        .all()
    )
    for row in rows:
        bucket = days.get(str(row.progress_date))
        if bucket is None:
            continue
        bucket["total"] += 1
        bucket[str(row.status)] = bucket.get(str(row.status), 0) + 1
        objective = row.objective
        bucket["entries"].append(
            {
                "objective_id": row.objective_id,
                "objective_title": objective.title if objective else None,
                "objective_color": objective.color if objective else None,
                "objective_icon": objective.icon if objective else None,
                "status": row.status,
                "remarks": row.remarks,
                "time_spent": int(row.time_spent or 0),
                "completed_at": row.completed_at.isoformat() if row.completed_at else None,
            }
        )
    return {"year": target_year, "month": target_month, "days": list(days.values())}


def weekly_chart(db: Session, user: User) -> list[dict[str, Any]]:
    """Monday..Sunday of the current local week."""
    week_start = start_of_week(_today(user))
    week_end = week_start + timedelta(days=6)
    by_day: dict[str, list[DailyProgress]] = {}
    for row in _progress_query(db, user.id, (week_start, week_end)).all():
        by_day.setdefault(str(row.progress_date), []).append(row)

    chart: list[dict[str, Any]] = []
    for d in iter_days(week_start, week_end):
        rows = by_day.get(day_key(d), [])
        minutes = sum(int(r.time_spent or 0) for r in rows)
        chart.append(
            {
                "day": weekday_name(d).capitalize(),
                "date": day_key(d),
                "completed": sum(1 for r in rows if r.status == "completed"),
                "missed": sum(1 for r in rows if r.status == "missed"),
                "pending": sum(1 for r in rows if r.status == "pending"),
                "partial": sum(1 for r in rows if r.status == "partial"),
                "skipped": sum(1 for r in rows if r.status == "skipped"),
                "total": len(rows),
                "time_spent": round(minutes / 60.0, 2),
                "time_spent_minutes": minutes,
            }
        )
    return chart
