from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import Lock
from typing import Protocol

from app.core.config import settings
from app.core.status import classify_scan
from app.integrations.supabase_client import insert_attendance_record, insert_verification_record


@dataclass(frozen=True)
class VerificationRecord:
    holder_id: str
    issue_date: str
    scanned_at: datetime
    scanner_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.holder_id, self.issue_date)


class VerificationRecordStore(Protocol):
    def claim(self, record: VerificationRecord) -> bool:
        """Atomically create ``record`` unless its (holder, date) key exists.

        Returns False for an existing key. Raises RuntimeError when the
        backing store is unreachable.
        """
        raise NotImplementedError


class AttendanceRecorder(Protocol):
    def record(self, holder_id: str, issue_date: str, scanned_at: datetime) -> None:
        raise NotImplementedError


class InMemoryVerificationRecordStore:
    """Process-local store for single-instance deployments and tests.

    Keys are spread over lock stripes so scans for different holders rarely
    contend; the check and insert for one key happen under one stripe lock.
    """

    def __init__(self, *, stripes: int = 64) -> None:
        self._locks = [Lock() for _ in range(max(1, stripes))]
        self._records: dict[tuple[str, str], VerificationRecord] = {}

    def _lock_for(self, key: tuple[str, str]) -> Lock:
        return self._locks[hash(key) % len(self._locks)]

    def claim(self, record: VerificationRecord) -> bool:
        with self._lock_for(record.key):
            if record.key in self._records:
                return False
            self._records[record.key] = record
            return True

    def get(self, holder_id: str, issue_date: str) -> VerificationRecord | None:
        return self._records.get((holder_id, issue_date))

    def __len__(self) -> int:
        return len(self._records)


class SupabaseVerificationRecordStore:
    def claim(self, record: VerificationRecord) -> bool:
        return insert_verification_record(
            user_id=record.holder_id,
            attendance_date=record.issue_date,
            scanned_at=record.scanned_at,
            scanner_id=record.scanner_id,
        )


class SupabaseAttendanceRecorder:
    def __init__(self, *, late_after: str | None = None) -> None:
        self._late_after = late_after or settings.attendance_late_after

    def record(self, holder_id: str, issue_date: str, scanned_at: datetime) -> None:
        status = classify_scan(scanned_at, late_after=self._late_after)
        insert_attendance_record(
            user_id=holder_id,
            attendance_date=issue_date,
            scanned_at=scanned_at,
            status=status.value,
        )


@lru_cache(maxsize=1)
def get_verification_store() -> VerificationRecordStore:
    backend = (settings.verification_store_backend or "").strip().lower()
    if backend == "memory":
        return InMemoryVerificationRecordStore()
    if backend == "supabase":
        return SupabaseVerificationRecordStore()
    raise RuntimeError(f"Unsupported verification store backend '{backend}'.")
