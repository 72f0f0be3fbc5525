from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from app.core.config import settings

_ISSUE_DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def attendance_tz() -> tzinfo:
    return ZoneInfo(settings.attendance_timezone)


def to_local(moment: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert ``moment`` to the attendance time zone.

    Naive datetimes are taken to already be local wall-clock time.
    """
    zone = tz or attendance_tz()
    if moment.tzinfo is None:
        return moment.replace(tzinfo=zone)
    return moment.astimezone(zone)


def holder_today(now: datetime | None = None, tz: tzinfo | None = None) -> str:
    zone = tz or attendance_tz()
    current = to_local(now, zone) if now is not None else datetime.now(zone)
    return current.date().isoformat()


def parse_issue_date(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` calendar date."""
    # fromisoformat alone also takes week dates such as 2025-W09-6.
    if not isinstance(value, str) or not _ISSUE_DATE_PATTERN.fullmatch(value):
        raise ValueError(f"Invalid calendar date: {value!r}")
    return date.fromisoformat(value)


def local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=tz)


def next_local_midnight(now: datetime, tz: tzinfo | None = None) -> datetime:
    local_now = to_local(now, tz)
    zone = local_now.tzinfo
    candidate = local_midnight(local_now.date() + timedelta(days=1), zone)
    # Subtracting two datetimes that share a tzinfo ignores DST offsets.
    while candidate.astimezone(timezone.utc) <= local_now.astimezone(timezone.utc):
        candidate = local_midnight(candidate.date() + timedelta(days=1), zone)
    return candidate


def seconds_between(start: datetime, end: datetime) -> float:
    return (end.astimezone(timezone.utc) - start.astimezone(timezone.utc)).total_seconds()
