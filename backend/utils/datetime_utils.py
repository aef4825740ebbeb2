import calendar
from datetime import datetime, date, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name, falling back to UTC for unknown or malformed names."""
    name = (tz_name or "").strip()
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            pass
    return ZoneInfo("UTC")


def user_timezone(user) -> str:
    """Timezone preference for a user, or the configured default."""
    tz_name = getattr(getattr(user, "settings", None), "timezone", None)
    return (tz_name or "").strip() or settings.DEFAULT_TIMEZONE


def local_now(tz_name: str | None, now: datetime | None = None) -> datetime:
    instant = now or utcnow()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(resolve_timezone(tz_name))


def today_for_tz(tz_name: str | None, now: datetime | None = None) -> date:
    """Return today's date in the user's timezone."""
    return local_now(tz_name, now).date()


def local_date(instant: datetime, tz_name: str | None) -> date:
    """Calendar day of an instant in a timezone. Naive datetimes are stored as UTC."""
    return local_now(tz_name, instant).date()


def start_of_week(d: date) -> date:
    """Return Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def end_of_week(d: date) -> date:
    """Return Sunday of the week containing d."""
    return start_of_week(d) + timedelta(days=6)


def start_of_month(d: date) -> date:
    return d.replace(day=1)


def end_of_month(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def weekday_name(d: date) -> str:
    return WEEKDAY_NAMES[d.weekday()]


def day_key(d: date) -> str:
    return d.isoformat()


def parse_day_key(raw: str | None) -> date | None:
    """Parse a YYYY-MM-DD string; None when empty. Raises ValueError on garbage."""
    value = (raw or "").strip()
    if not value:
        return None
    return date.fromisoformat(value[:10])


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
