from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from config import settings
from db.database import SessionLocal
from db.models import User, UserSettings
from services.notification_service import emit_event, pending_reminder, weekly_summary
from services.progress_sync_service import sync_progress
from utils.datetime_utils import local_now, user_timezone, utcnow

logger = logging.getLogger(__name__)

HOURLY_JOB_ID = "hourly_progress_tick"

_scheduler: BackgroundScheduler | None = None


@dataclass
class TickReport:
    users_checked: int = 0
    reminders: int = 0
    summaries: int = 0
    failures: int = 0


def _reminder_users(db: Session) -> list[User]:
    return (
        db.query(User)
        .join(UserSettings, UserSettings.user_id == User.id)
        .filter(UserSettings.reminders_enabled.is_(True))
        .order_by(User.id.asc())
        .all()
    )


def process_user_tick(
    db: Session,
    user: User,
    now: datetime,
    *,
    session_factory: Callable[[], Session] | None = None,
) -> tuple[bool, bool]:
    """Reminder and weekly-summary checks for one user at one wall-clock instant."""
    local = local_now(user_timezone(user), now)
    reminded = False
    summarized = False

    if local.hour in set(settings.REMINDER_HOURS_LOCAL):
        sync_progress(user.id, reference_day=local.date(), session_factory=session_factory)
        event = pending_reminder(db, user, now=now)
        if event is not None:
            reminded = emit_event(db, event) is not None

    if local.weekday() == settings.WEEKLY_SUMMARY_WEEKDAY_LOCAL and local.hour == settings.WEEKLY_SUMMARY_HOUR_LOCAL:
        summarized = emit_event(db, weekly_summary(db, user, now=now)) is not None

    return reminded, summarized


def run_hourly_tick(
    now: datetime | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> TickReport:
    factory = session_factory or SessionLocal
    instant = now or utcnow()
    report = TickReport()
    db = factory()
    try:
        for user in _reminder_users(db):
            user_id = user.id
            report.users_checked += 1
            try:
                reminded, summarized = process_user_tick(db, user, instant, session_factory=session_factory)
                db.commit()
            except Exception:
                db.rollback()
                report.failures += 1
                logger.exception("Hourly tick failed for user %s", user_id)
                continue
            report.reminders += int(reminded)
            report.summaries += int(summarized)
    finally:
        db.close()

    logger.info(
        "Hourly tick at %s: users=%s reminders=%s summaries=%s failures=%s",
        instant.isoformat(),
        report.users_checked,
        report.reminders,
        report.summaries,
        report.failures,
    )
    return report


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler
    if not settings.SCHEDULER_ENABLED:
        logger.info("[SCHEDULER] Disabled by configuration")
        return None
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_hourly_tick,
        CronTrigger(minute=0, timezone="UTC"),
        id=HOURLY_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info("[SCHEDULER] Started hourly reminder scheduler")
    return scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("[SCHEDULER] Stopped hourly reminder scheduler")
    _scheduler = None
