from __future__ import annotations

from datetime import datetime, time, tzinfo

from app.core.local_time import to_local
from app.schemas.common import AttendanceStatus


def parse_cutoff(value: str) -> time:
    try:
        hours, minutes = (int(part) for part in value.strip().split(":", 1))
        return time(hours, minutes)
    except ValueError as exc:
        raise ValueError(f"Invalid HH:MM cutoff: {value!r}") from exc


def classify_scan(scanned_at: datetime, *, late_after: str, tz: tzinfo | None = None) -> AttendanceStatus:
    # Absent is assigned by the daily roll-up, never by a scan.
    local_time = to_local(scanned_at, tz).time()
    if local_time > parse_cutoff(late_after):
        return AttendanceStatus.LATE
    return AttendanceStatus.ON_TIME
