import calendar
import math
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # Some drivers (SQLite) hand back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def days_left(end_date: datetime, now: datetime) -> int:
    remaining = ensure_utc(end_date) - ensure_utc(now)
    return math.ceil(remaining / timedelta(days=1))


def format_date(value: datetime) -> str:
    return ensure_utc(value).strftime("%d.%m.%Y")


def format_datetime(value: datetime) -> str:
    return ensure_utc(value).strftime("%d.%m.%Y %H:%M UTC")
