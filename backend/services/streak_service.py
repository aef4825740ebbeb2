from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from db.models import DailyProgress, User
from utils.datetime_utils import day_key, parse_day_key, today_for_tz, user_timezone


@dataclass(frozen=True)
class StreakInfo:
    current: int
    longest: int
    last_completed_day: date | None
    total_completed_days: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "current_streak": self.current,
            "longest_streak": self.longest,
            "last_completed_date": self.last_completed_day.isoformat() if self.last_completed_day else None,
            "total_completed_days": self.total_completed_days,
        }


def completed_days(db: Session, user_id: int, *, until: date) -> list[date]:
    """Distinct days with at least one completed record, newest first."""
    rows = (
        db.query(DailyProgress.progress_date)
        .filter(
            DailyProgress.user_id == user_id,
            DailyProgress.status == "completed",
            DailyProgress.progress_date <= day_key(until),
        )
        .distinct()
        .all()
    )
    days = {parse_day_key(row[0]) for row in rows}
    return sorted((d for d in days if d is not None), reverse=True)


def current_streak(days_desc: list[date], today: date) -> int:
    if not days_desc:
        return 0
    # Today is still in progress, so a streak that ended yesterday is alive.
    if days_desc[0] not in (today, today - timedelta(days=1)):
        return 0
    streak = 1
    for previous, current in zip(days_desc, days_desc[1:]):
        if (previous - current).days != 1:
            break
        streak += 1
    return streak


def longest_streak(days_asc: list[date]) -> int:
    if not days_asc:
        return 0
    longest = run = 1
    for previous, current in zip(days_asc, days_asc[1:]):
        if (current - previous).days == 1:
            run += 1
            longest = max(longest, run)
        else:
            run = 1
    return longest


def compute_streak(db: Session, user: User, *, reference_day: date | None = None) -> StreakInfo:
    """Streak facts from the ledger. Callers sync first; this only reads."""
    today = reference_day or today_for_tz(user_timezone(user))
    days_desc = completed_days(db, user.id, until=today)
    if not days_desc:
        return StreakInfo(current=0, longest=0, last_completed_day=None, total_completed_days=0)
    return StreakInfo(
        current=current_streak(days_desc, today),
        longest=longest_streak(list(reversed(days_desc))),
        last_completed_day=days_desc[0],
        total_completed_days=len(days_desc),
    )
