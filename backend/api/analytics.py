from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import settings
from db.database import get_db
from db.models import User
from services.analytics_service import (
    analytics_by_category,
    analytics_by_objective,
    daily_calendar,
    overall_analytics,
    weekly_chart,
)
from services.progress_sync_service import sync_progress
from services.streak_service import compute_streak
from utils.datetime_utils import parse_day_key


router = APIRouter(prefix="/analytics", tags=["analytics"])


def _range(start_date: str | None, end_date: str | None):
    try:
        return parse_day_key(start_date), parse_day_key(end_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="Dates must be YYYY-MM-DD")


@router.get("/overall")
def overall(
    period: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sync_progress(user.id)
    try:
        return overall_analytics(db, user, period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/by-objective")
def by_objective(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    start, end = _range(start_date, end_date)
    sync_progress(user.id)
    try:
        data = analytics_by_objective(db, user, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"count": len(data), "data": data}


@router.get("/by-category")
def by_category(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    start, end = _range(start_date, end_date)
    sync_progress(user.id)
    try:
        return {"data": analytics_by_category(db, user, start, end)}
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/daily")
def daily(
    month: Optional[int] = None,
    year: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sync_progress(user.id, settings.SYNC_LOOKBACK_DAYS_EXTENDED)
    try:
        return daily_calendar(db, user, year=year, month=month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/streak")
def streak(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sync_progress(user.id, settings.SYNC_LOOKBACK_DAYS_EXTENDED)
    return compute_streak(db, user).as_dict()


@router.get("/weekly-chart")
def weekly(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sync_progress(user.id)
    return {"data": weekly_chart(db, user)}
