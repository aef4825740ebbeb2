import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import settings as app_settings
from db.database import get_db
from db.models import User, UserSettings
from services.progress_sync_service import sync_progress

router = APIRouter(prefix="/settings", tags=["settings"])
logger = logging.getLogger(__name__)


class SettingsUpdate(BaseModel):
    timezone: Optional[str] = None
    reminders_enabled: Optional[bool] = None


def _settings_row(db: Session, user: User) -> UserSettings:
    row = db.query(UserSettings).filter(UserSettings.user_id == user.id).first()
    if not row:
        row = UserSettings(user_id=user.id, timezone=app_settings.DEFAULT_TIMEZONE, reminders_enabled=True)
        db.add(row)
        db.flush()
    return row


def _settings_to_dict(row: UserSettings) -> dict:
    return {
        "timezone": row.timezone or app_settings.DEFAULT_TIMEZONE,
        "reminders_enabled": bool(row.reminders_enabled),
    }


@router.get("")
def get_settings(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _settings_to_dict(_settings_row(db, user))


@router.put("")
def update_settings(
    payload: SettingsUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = _settings_row(db, user)
    timezone_changed = False
    if payload.timezone is not None:
        tz_name = payload.timezone.strip()
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            raise HTTPException(status_code=400, detail=f"Unknown timezone: {payload.timezone}")
        timezone_changed = tz_name != row.timezone
        row.timezone = tz_name
    if payload.reminders_enabled is not None:
        row.reminders_enabled = payload.reminders_enabled
    db.commit()
    if timezone_changed:
        logger.info("User %s switched timezone to %s", user.id, row.timezone)
        sync_progress(user.id)
    return _settings_to_dict(row)
