"""UTC time helpers.

All timestamps are persisted as naive UTC so that comparisons behave the same
on SQLite and PostgreSQL ``timestamp without time zone`` columns.
"""

from datetime import datetime, timedelta, timezone

SHORT_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(value: datetime) -> datetime:
    """Monday 00:00 of the ISO week containing ``value``."""
    return start_of_day(value) - timedelta(days=value.weekday())


def short_weekday(value: datetime) -> str:
    return SHORT_WEEKDAYS[value.weekday()]
