"""Reconcile a user's weekly template against the per-day progress ledger.

One pass, for one user:

1. promote stale ``pending`` rows (before today, on/after the template's
   creation day) to ``missed``;
2. purge engine-owned rows dated before the template existed;
3. walk every day from ``today - look_back_days`` to the end of the current
   week and, per day, collapse duplicates, drop orphans and insert the
   missing rows.

Passes are idempotent. A pass that fails halfway leaves the ledger no worse
than before and the next pass converges it. ``completed``, ``partial`` and
``skipped`` rows are user facts and are never rewritten or deleted here.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from config import settings
from db.database import SessionLocal
from db.models import ENGINE_OWNED_STATUSES, DailyProgress, User
from services.schedule_service import get_default_template, scheduled_objective_ids
from services.sync_guard import sync_guard
from utils.datetime_utils import (
    day_key,
    end_of_week,
    iter_days,
    local_date,
    today_for_tz,
    user_timezone,
    utcnow,
)

logger = logging.getLogger(__name__)

# Which row survives when several share (user, objective, day).
STATUS_PRIORITY: dict[str, int] = {
    "completed": 4,
    "partial": 3,
    "skipped": 2,
    "missed": 1,
    "pending": 0,
}


@dataclass
class SyncReport:
    user_id: int
    today: str | None = None
    promoted: int = 0
    purged: int = 0
    deduplicated: int = 0
    orphaned: int = 0
    created: int = 0
    failed_days: list[str] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return self.promoted + self.purged + self.deduplicated + self.orphaned + self.created


def survivor_rank(row: DailyProgress) -> tuple[int, int, int]:
    # Higher wins: status priority, then time spent, then the oldest row.
    return (
        STATUS_PRIORITY.get(str(row.status), -1),
        int(row.time_spent or 0),
        -int(row.id or 0),
    )


def pick_survivor(rows: Iterable[DailyProgress]) -> DailyProgress:
    return max(rows, key=survivor_rank)


def _promote_stale_pending(db: Session, user_id: int, *, today: date, earliest: date) -> int:
    return int(
        db.query(DailyProgress)
        .filter(
            DailyProgress.user_id == user_id,
            DailyProgress.status == "pending",
            DailyProgress.progress_date >= day_key(earliest),
            DailyProgress.progress_date < day_key(today),
        )
        .update(
            {DailyProgress.status: "missed", DailyProgress.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
        or 0
    )


def _purge_pre_template_rows(db: Session, user_id: int, *, earliest: date) -> int:
    # A template recreated after bad data existed must not inherit rows from
    # before its own creation day.
    return int(
        db.query(DailyProgress)
        .filter(
            DailyProgress.user_id == user_id,
            DailyProgress.status.in_(sorted(ENGINE_OWNED_STATUSES)),
            DailyProgress.progress_date < day_key(earliest),
        )
        .delete(synchronize_session=False)
        or 0
    )


def _dedupe(rows: list[DailyProgress]) -> tuple[dict[int, DailyProgress], list[DailyProgress]]:
    grouped: dict[int, list[DailyProgress]] = defaultdict(list)
    for row in rows:
        grouped[int(row.objective_id)].append(row)
    survivors: dict[int, DailyProgress] = {}
    losers: list[DailyProgress] = []
    for objective_id, group in grouped.items():
        keep = pick_survivor(group)
        survivors[objective_id] = keep
        losers.extend(row for row in group if row is not keep)
    return survivors, losers


def _orphans(survivors: dict[int, DailyProgress], scheduled: set[int]) -> list[DailyProgress]:
    return [
        row
        for objective_id, row in survivors.items()
        if objective_id not in scheduled and str(row.status) in ENGINE_OWNED_STATUSES
    ]


def _delete_unchanged(db: Session, rows: Iterable[DailyProgress]) -> int:
    """Delete rows only while they still hold the status this pass loaded.

    A row the user rewrote after it was read is left for the next pass.
    """
    by_status: dict[str, list[int]] = defaultdict(list)
    for row in rows:
        by_status[str(row.status)].append(int(row.id))
    deleted = 0
    for status, ids in by_status.items():
        deleted += int(
            db.query(DailyProgress)
            .filter(DailyProgress.id.in_(ids), DailyProgress.status == status)
            .delete(synchronize_session=False)
            or 0
        )
    return deleted


def _delete_orphans(db: Session, rows: list[DailyProgress]) -> int:
    if not rows:
        return 0
    return int(
        db.query(DailyProgress)
        .filter(
            DailyProgress.id.in_([int(row.id) for row in rows]),
            DailyProgress.status.in_(sorted(ENGINE_OWNED_STATUSES)),
        )
        .delete(synchronize_session=False)
        or 0
    )


def insert_if_absent(db: Session, values: dict) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING on the (user, objective, day) key."""
    if db.get_bind().dialect.name == "postgresql":
        stmt = pg_insert(DailyProgress).values(**values).on_conflict_do_nothing()
    else:
        stmt = sqlite_insert(DailyProgress).values(**values).on_conflict_do_nothing()
    result = db.connection().execute(stmt)
    return bool(result.rowcount)


def _reconcile_day(
    db: Session,
    user_id: int,
    day: date,
    scheduled: list[int],
    *,
    today: date,
) -> tuple[int, int, int]:
    key = day_key(day)
    rows = (
        db.query(DailyProgress)
        .filter(DailyProgress.user_id == user_id, DailyProgress.progress_date == key)
        .order_by(DailyProgress.id.asc())
        .all()
    )
    survivors, losers = _dedupe(rows)
    orphans = _orphans(survivors, set(scheduled))
    deduplicated = _delete_unchanged(db, losers)
    orphaned = _delete_orphans(db, orphans)

    fill_status = "pending" if day >= today else "missed"
    now = datetime.utcnow()
    created = 0
    for objective_id in scheduled:
        if objective_id in survivors:
            continue
        inserted = insert_if_absent(
            db,
            {
                "user_id": user_id,
                "objective_id": objective_id,
                "progress_date": key,
                "status": fill_status,
                "time_spent": 0,
                "notes": "",
                "created_at": now,
                "updated_at": now,
            },
        )
        if inserted:
            created += 1
    return deduplicated, orphaned, created


def reconcile_user_progress(
    db: Session,
    user: User,
    look_back_days: int,
    *,
    reference_day: date | None = None,
) -> SyncReport:
    user_id = int(user.id)
    report = SyncReport(user_id=user_id)
    schedule = get_default_template(db, user_id)
    if schedule is None:
        return report

    tz_name = user_timezone(user)
    today = reference_day or today_for_tz(tz_name)
    earliest = local_date(schedule.created_at or utcnow(), tz_name)
    report.today = day_key(today)

    window_start = max(today - timedelta(days=max(int(look_back_days), 0)), earliest)
    # Resolve the template up front; commits below expire the ORM objects.
    plan = [(day, scheduled_objective_ids(schedule, day)) for day in iter_days(window_start, end_of_week(today))]

    try:
        report.promoted = _promote_stale_pending(db, user_id, today=today, earliest=earliest)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Stale-pending sweep failed for user %s", user_id)

    try:
        report.purged = _purge_pre_template_rows(db, user_id, earliest=earliest)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Pre-template purge failed for user %s", user_id)

    for day, scheduled in plan:
        try:
            deduplicated, orphaned, created = _reconcile_day(db, user_id, day, scheduled, today=today)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Progress sync skipped %s for user %s", day_key(day), user_id)
            report.failed_days.append(day_key(day))
            continue
        report.deduplicated += deduplicated
        report.orphaned += orphaned
        report.created += created

    return report


def sync_progress(
    user_id: int,
    look_back_days: int | None = None,
    *,
    reference_day: date | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> SyncReport | None:
    """Bring one user's ledger in line with their default template.

    Concurrent calls for the same (user, look-back) share a single pass.
    Never raises; a failed pass is logged and returns None.
    """
    days = settings.SYNC_LOOKBACK_DAYS if look_back_days is None else max(int(look_back_days), 0)
    factory = session_factory or SessionLocal

    def _run_pass() -> SyncReport:
        db = factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                return SyncReport(user_id=user_id)
            return reconcile_user_progress(db, user, days, reference_day=reference_day)
        finally:
            db.close()

    try:
        report = sync_guard.run((int(user_id), days), _run_pass)
    except Exception:
        logger.exception("Progress sync failed for user %s", user_id)
        return None

    if report.writes or report.failed_days:
        logger.info(
            "Progress sync user=%s today=%s promoted=%s purged=%s deduplicated=%s orphaned=%s created=%s failed_days=%s",
            user_id,
            report.today,
            report.promoted,
            report.purged,
            report.deduplicated,
            report.orphaned,
            report.created,
            len(report.failed_days),
        )
    return report


def collapse_duplicate_progress(db: Session) -> int:
    """Apply the survivor rule across every user; returns rows removed."""
    groups = (
        db.query(DailyProgress.user_id, DailyProgress.objective_id, DailyProgress.progress_date)
        .group_by(DailyProgress.user_id, DailyProgress.objective_id, DailyProgress.progress_date)
        .having(func.count(DailyProgress.id) > 1)
        .all()
    )
    removed = 0
    for user_id, objective_id, progress_date in groups:
        rows = (
            db.query(DailyProgress)
            .filter(
                DailyProgress.user_id == user_id,
                DailyProgress.objective_id == objective_id,
                DailyProgress.progress_date == progress_date,
            )
            .all()
        )
        keep = pick_survivor(rows)
        removed += _delete_unchanged(db, (row for row in rows if row is not keep))
    db.flush()
    return removed
