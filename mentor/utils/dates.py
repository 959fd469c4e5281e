from datetime import date, datetime, timezone
from typing import Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    # Naive timestamps from older documents are treated as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_now(now: Optional[datetime]) -> datetime:
    return ensure_aware(now) if now is not None else utc_now()


def days_between(earlier: datetime, later: datetime) -> int:
    delta = ensure_aware(later) - ensure_aware(earlier)
    return max(0, delta.days)


def iso_week(day: date) -> Tuple[int, int]:
    calendar = day.isocalendar()
    return calendar[0], calendar[1]


def minute_bucket(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return ensure_aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M")


def hour_bucket(value: datetime) -> str:
    return ensure_aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


def format_day(value: datetime) -> str:
    return ensure_aware(value).strftime("%Y-%m-%d")
