from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.progress_sync_service import sync_progress
from services.schedule_service import (
    create_schedule,
    delete_schedule,
    get_default_template,
    get_schedule,
    list_schedules,
    make_default,
    replace_day,
    replace_weekly_schedule,
    serialize_schedule,
    today_schedule,
)

router = APIRouter(prefix="/schedules", tags=["schedules"])


class ScheduleItemPayload(BaseModel):
    objective_id: int
    start_time: Optional[str] = None  # HH:MM
    end_time: Optional[str] = None
    duration_minutes: int = Field(60, ge=0)


class ScheduleDayPayload(BaseModel):
    day: str  # monday..sunday
    is_active: bool = True
    items: list[ScheduleItemPayload] = Field(default_factory=list)


class ScheduleCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    weekly_schedule: list[ScheduleDayPayload] = Field(default_factory=list)
    is_default: bool = False


class ScheduleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    weekly_schedule: list[ScheduleDayPayload]


class ScheduleDayUpdateRequest(BaseModel):
    is_active: bool = True
    items: list[ScheduleItemPayload] = Field(default_factory=list)


def _raise_for(exc: ValueError):
    detail = str(exc)
    raise HTTPException(status_code=404 if detail == "Schedule not found" else 400, detail=detail)


@router.get("")
def list_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = list_schedules(db, user)
    return {"count": len(rows), "data": [serialize_schedule(r) for r in rows]}


@router.get("/default")
def get_default(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = get_default_template(db, user.id)
    if not row:
        raise HTTPException(status_code=404, detail="No default schedule")
    return serialize_schedule(row)


@router.get("/today")
def get_today(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return today_schedule(db, user)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/{schedule_id}")
def get_one(schedule_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return serialize_schedule(get_schedule(db, user, schedule_id))
    except ValueError as exc:
        _raise_for(exc)


@router.post("", status_code=201)
def create(
    payload: ScheduleCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = create_schedule(
            db,
            user,
            name=payload.name,
            description=payload.description,
            weekly_schedule=[d.model_dump() for d in payload.weekly_schedule],
            is_default=payload.is_default,
        )
    except ValueError as exc:
        _raise_for(exc)
    db.commit()
    data = serialize_schedule(row)
    if row.is_default:
        sync_progress(user.id)
    return data


@router.put("/{schedule_id}")
def update(
    schedule_id: int,
    payload: ScheduleUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = replace_weekly_schedule(
            db,
            user,
            schedule_id,
            weekly_schedule=[d.model_dump() for d in payload.weekly_schedule],
            name=payload.name,
            description=payload.description,
        )
    except ValueError as exc:
        _raise_for(exc)
    db.commit()
    data = serialize_schedule(row)
    if row.is_default:
        sync_progress(user.id)
    return data


@router.post("/{schedule_id}/default")
def set_default(schedule_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        row = make_default(db, user, schedule_id)
    except ValueError as exc:
        _raise_for(exc)
    db.commit()
    data = serialize_schedule(row)
    sync_progress(user.id)
    return data


@router.delete("/{schedule_id}")
def delete(schedule_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        delete_schedule(db, user, schedule_id)
    except ValueError as exc:
        _raise_for(exc)
    db.commit()
    return {"status": "ok"}


@router.put("/{schedule_id}/day/{day}")
def update_day(
    schedule_id: int,
    day: str,
    payload: ScheduleDayUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = replace_day(
            db,
            user,
            schedule_id,
            day,
            items=[item.model_dump() for item in payload.items],
            is_active=payload.is_active,
        )
    except ValueError as exc:
        _raise_for(exc)
    db.commit()
    data = serialize_schedule(row)
    if row.is_default:
        sync_progress(user.id)
    return data
