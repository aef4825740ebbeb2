from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.progress_service import (
    delete_progress,
    list_daily_progress,
    list_objective_progress,
    list_progress_range,
    record_progress,
    serialize_progress,
    skip_progress,
)
from services.progress_sync_service import sync_progress
from utils.datetime_utils import day_key, parse_day_key, today_for_tz, user_timezone


router = APIRouter(prefix="/progress", tags=["progress"])


class ProgressUpdate(BaseModel):
    objective_id: int
    status: str  # pending | completed | missed | partial | skipped
    date: Optional[str] = None  # YYYY-MM-DD, defaults to today (local)
    remarks: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=2000)
    time_spent: Optional[int] = Field(None, ge=0)


class SkipRequest(BaseModel):
    objective_id: int
    date: Optional[str] = None
    remarks: Optional[str] = Field(None, max_length=1000)


def _parse_day(raw: str | None, field_name: str = "date") -> date | None:
    try:
        return parse_day_key(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field_name} must be YYYY-MM-DD")


@router.get("/daily")
def daily_progress(
    date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = _parse_day(date) or today_for_tz(user_timezone(user))
    sync_progress(user.id)
    rows = list_daily_progress(db, user, target)
    return {"date": day_key(target), "data": [serialize_progress(r) for r in rows]}


@router.get("/range")
def progress_range(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    start = _parse_day(start_date, "start_date")
    end = _parse_day(end_date, "end_date")
    if not start or not end:
        raise HTTPException(status_code=400, detail="Please provide start_date and end_date")
    sync_progress(user.id)
    try:
        rows = list_progress_range(db, user, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"data": [serialize_progress(r) for r in rows]}


@router.get("/objective/{objective_id}")
def objective_progress(
    objective_id: int,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    start = _parse_day(start_date, "start_date")
    end = _parse_day(end_date, "end_date")
    sync_progress(user.id)
    rows = list_objective_progress(db, user, objective_id, start=start, end=end)
    return {"data": [serialize_progress(r) for r in rows]}


@router.post("")
def upsert_progress(
    payload: ProgressUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = record_progress(
            db,
            user,
            objective_id=payload.objective_id,
            status=payload.status,
            day=_parse_day(payload.date),
            remarks=payload.remarks,
            notes=payload.notes,
            time_spent=payload.time_spent,
        )
    except ValueError as exc:
        detail = str(exc)
        raise HTTPException(status_code=404 if "not found" in detail else 400, detail=detail)
    db.commit()
    return {"status": "ok", "data": serialize_progress(row)}


@router.post("/skip")
def skip(
    payload: SkipRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = skip_progress(
            db,
            user,
            objective_id=payload.objective_id,
            day=_parse_day(payload.date),
            remarks=payload.remarks,
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()
    return {"status": "ok", "data": serialize_progress(row)}


@router.post("/sync")
def sync_now(
    look_back_days: Optional[int] = None,
    user: User = Depends(get_current_user),
):
    report = sync_progress(user.id, look_back_days)
    if report is None:
        return {"status": "deferred"}
    return {
        "status": "ok",
        "today": report.today,
        "promoted": report.promoted,
        "purged": report.purged,
        "deduplicated": report.deduplicated,
        "orphaned": report.orphaned,
        "created": report.created,
        "failed_days": report.failed_days,
    }


@router.delete("/{progress_id}")
def remove_progress(
    progress_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        delete_progress(db, user, progress_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()
    return {"status": "ok"}
