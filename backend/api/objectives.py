from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.objective_service import (
    create_objective,
    deactivate_objective,
    get_objective,
    list_categories,
    list_objectives,
    serialize_objective,
    update_objective,
)
from services.progress_service import list_objective_progress, serialize_progress
from services.progress_sync_service import sync_progress
from utils.datetime_utils import parse_day_key

router = APIRouter(prefix="/objectives", tags=["objectives"])


class ObjectiveCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    priority: str = "medium"
    estimated_minutes: int = Field(60, ge=0)
    color: Optional[str] = None
    icon: Optional[str] = None


class ObjectiveUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    estimated_minutes: Optional[int] = Field(None, ge=0)
    color: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None


@router.get("")
def list_all(
    include_inactive: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = list_objectives(db, user, include_inactive=include_inactive)
    return {"count": len(rows), "data": [serialize_objective(r) for r in rows]}


@router.get("/categories/all")
def categories(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    names = list_categories(db, user)
    return {"count": len(names), "data": names}


@router.get("/{objective_id}")
def get_one(
    objective_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return serialize_objective(get_objective(db, user, objective_id))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/{objective_id}/progress")
def get_with_progress(
    objective_id: int,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        start = parse_day_key(start_date)
        end = parse_day_key(end_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="start_date and end_date must be YYYY-MM-DD")
    try:
        objective = get_objective(db, user, objective_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    sync_progress(user.id)
    rows = list_objective_progress(db, user, objective.id, start=start, end=end)
    return {**serialize_objective(objective), "progress": [serialize_progress(r) for r in rows]}


@router.post("", status_code=201)
def create(
    payload: ObjectiveCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = create_objective(db, user, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    return serialize_objective(row)


@router.put("/{objective_id}")
def update(
    objective_id: int,
    payload: ObjectiveUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = update_objective(db, user, objective_id, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        detail = str(exc)
        raise HTTPException(status_code=404 if "not found" in detail else 400, detail=detail)
    db.commit()
    return serialize_objective(row)


@router.delete("/{objective_id}")
def delete(
    objective_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        deactivate_objective(db, user, objective_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()
    return {"status": "ok"}
