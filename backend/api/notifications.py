import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.notification_service import (
    emit_event,
    list_notifications,
    mark_all_read,
    mark_notification_read,
    pending_reminder,
    serialize_notification,
)
from services.progress_sync_service import sync_progress

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


@router.get("")
def list_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = list_notifications(db, user)
    unread = sum(1 for r in rows if not r.is_read)
    return {
        "count": len(rows),
        "unread_count": unread,
        "data": [serialize_notification(r) for r in rows],
    }


@router.put("/read-all")
def read_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = mark_all_read(db, user)
    db.commit()
    return {"status": "ok", "updated": updated}


@router.put("/{notification_id}/read")
def read_one(notification_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        row = mark_notification_read(db, user, notification_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()
    return serialize_notification(row)


@router.post("/trigger-reminder")
def trigger_reminder(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    sync_progress(user.id)
    event = pending_reminder(db, user)
    if event is None:
        return {"status": "ok", "sent": False, "message": "No pending tasks for today"}
    row = emit_event(db, event)
    db.commit()
    if row is None:
        logger.info("Reminder for user %s already sent this hour", user.id)
        return {"status": "ok", "sent": False, "message": "Reminder already sent"}
    return {"status": "ok", "sent": True, "data": serialize_notification(row)}
