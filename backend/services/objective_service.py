from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from db.models import LearningObjective, User

PRIORITIES = {"low", "medium", "high"}


def _clean_priority(raw: str | None) -> str:
    value = str(raw or "medium").strip().lower()
    if value not in PRIORITIES:
        raise ValueError("priority must be low, medium, or high")
    return value


def list_objectives(db: Session, user: User, *, include_inactive: bool = False) -> list[LearningObjective]:
    query = db.query(LearningObjective).filter(LearningObjective.user_id == user.id)
    if not include_inactive:
        query = query.filter(LearningObjective.is_active.is_(True))
    return query.order_by(LearningObjective.created_at.desc(), LearningObjective.id.desc()).all()


def list_categories(db: Session, user: User) -> list[str]:
    rows = (
        db.query(LearningObjective.category)
        .filter(LearningObjective.user_id == user.id, LearningObjective.is_active.is_(True))
        .distinct()
        .order_by(LearningObjective.category.asc())
        .all()
    )
    return [row[0] for row in rows if row[0]]


def get_objective(db: Session, user: User, objective_id: int) -> LearningObjective:
    row = (
        db.query(LearningObjective)
        .filter(LearningObjective.user_id == user.id, LearningObjective.id == objective_id)
        .first()
    )
    if not row:
        raise ValueError("Learning objective not found")
    return row


def create_objective(db: Session, user: User, **fields: Any) -> LearningObjective:
    title = " ".join(str(fields.get("title") or "").split())
    if not title:
        raise ValueError("Please provide a title")
    row = LearningObjective(
        user_id=user.id,
        title=title[:200],
        description=(fields.get("description") or "").strip()[:1000] or None,
        category=(fields.get("category") or "General").strip() or "General",
        priority=_clean_priority(fields.get("priority")),
        estimated_minutes=max(int(fields.get("estimated_minutes") or 60), 0),
        color=fields.get("color") or "#8b6d4b",
        icon=fields.get("icon") or "Book",
        is_active=True,
    )
    db.add(row)
    db.flush()
    return row


def update_objective(db: Session, user: User, objective_id: int, **fields: Any) -> LearningObjective:
    row = get_objective(db, user, objective_id)
    if fields.get("title") is not None:
        title = " ".join(str(fields["title"]).split())
        if not title:
            raise ValueError("Please provide a title")
        row.title = title[:200]
    if fields.get("description") is not None:
        row.description = str(fields["description"]).strip()[:1000] or None
    if fields.get("category") is not None:
        row.category = str(fields["category"]).strip() or "General"
    if fields.get("priority") is not None:
        row.priority = _clean_priority(fields["priority"])
    if fields.get("estimated_minutes") is not None:
        row.estimated_minutes = max(int(fields["estimated_minutes"]), 0)
    for key in ("color", "icon"):
        if fields.get(key) is not None:
            setattr(row, key, fields[key])
    if fields.get("is_active") is not None:
        row.is_active = bool(fields["is_active"])
    db.flush()
    return row


def deactivate_objective(db: Session, user: User, objective_id: int) -> LearningObjective:
    # Soft delete: progress history keeps pointing at the row.
    row = get_objective(db, user, objective_id)
    row.is_active = False
    db.flush()
    return row


def serialize_objective(row: LearningObjective) -> dict[str, Any]:
    return {
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "category": row.category,
        "priority": row.priority,
        "estimated_minutes": row.estimated_minutes,
        "color": row.color,
        "icon": row.icon,
        "is_active": bool(row.is_active),
    }
