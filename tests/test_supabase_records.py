from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from app.core.records import (
    InMemoryVerificationRecordStore,
    SupabaseAttendanceRecorder,
    SupabaseVerificationRecordStore,
    VerificationRecord,
    get_verification_store,
)
from app.integrations.supabase_client import (
    get_holder_profile,
    get_supabase_client,
    insert_attendance_record,
    insert_verification_record,
)

MANILA = ZoneInfo("Asia/Manila")


class _FakeApiError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = None
        self.hint = None


class _FakeQuery:
    def __init__(self, client: "_FakeClient", table: str) -> None:
        self._client = client
        self._table = table

    def insert(self, row: dict):
        self._client.calls.append(("insert", self._table, row, {}))
        return self

    def upsert(self, row: dict, **kwargs):
        self._client.calls.append(("upsert", self._table, row, kwargs))
        return self

    def select(self, _columns: str):
        return self

    def eq(self, _column: str, _value: str):
        return self

    def limit(self, _count: int):
        return self

    def execute(self):
        if self._client.error is not None:
            raise self._client.error
        return SimpleNamespace(data=self._client.rows)


class _FakeClient:
    def __init__(self, *, error: Exception | None = None, rows: list[dict] | None = None) -> None:
        self.error = error
        self.rows = rows or []
        self.calls: list[tuple] = []

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)


def _use_client(monkeypatch, client: _FakeClient) -> _FakeClient:
    monkeypatch.setattr("app.integrations.supabase_client.get_supabase_client", lambda: client)
    return client


def test_insert_verification_record_writes_utc_row(monkeypatch) -> None:
    client = _use_client(monkeypatch, _FakeClient())
    created = insert_verification_record(
        user_id="u-42",
        attendance_date="2025-03-01",
        scanned_at=datetime(2025, 3, 1, 7, 30, tzinfo=MANILA),
        scanner_id="gate-1",
    )
    assert created is True
    operation, table, row, _ = client.calls[0]
    assert (operation, table) == ("insert", "attendance_verifications")
    assert row["scanned_at"] == "2025-02-28T23:30:00+00:00"
    assert row["attendance_date"] == "2025-03-01"


def test_unique_violation_means_already_recorded(monkeypatch) -> None:
    _use_client(monkeypatch, _FakeClient(error=_FakeApiError("23505", "duplicate key value")))
    created = insert_verification_record(
        user_id="u-42",
        attendance_date="2025-03-01",
        scanned_at=datetime(2025, 3, 1, 7, 30, tzinfo=MANILA),
        scanner_id=None,
    )
    assert created is False


def test_other_store_errors_are_transient(monkeypatch) -> None:
    _use_client(monkeypatch, _FakeClient(error=_FakeApiError("08006", "connection failure")))
    with pytest.raises(RuntimeError, match="connection failure"):
        insert_verification_record(
            user_id="u-42",
            attendance_date="2025-03-01",
            scanned_at=datetime(2025, 3, 1, 7, 30, tzinfo=MANILA),
            scanner_id=None,
        )


def test_unconfigured_supabase_is_transient(monkeypatch) -> None:
    monkeypatch.setattr("app.core.config.settings.supabase_url", "")
    get_supabase_client.cache_clear()
    with pytest.raises(RuntimeError, match="not configured"):
        get_holder_profile("u-42")
    get_supabase_client.cache_clear()


def test_get_holder_profile_returns_first_row(monkeypatch) -> None:
    _use_client(monkeypatch, _FakeClient(rows=[{"user_id": "u-42", "name": "Maria Clara"}]))
    assert get_holder_profile("u-42") == {"user_id": "u-42", "name": "Maria Clara"}

    _use_client(monkeypatch, _FakeClient(rows=[]))
    assert get_holder_profile("u-42") is None


def test_attendance_upsert_ignores_duplicates(monkeypatch) -> None:
    client = _use_client(monkeypatch, _FakeClient())
    insert_attendance_record(
        user_id="u-42",
        attendance_date="2025-03-01",
        scanned_at=datetime(2025, 3, 1, 8, 5, tzinfo=MANILA),
        status="late",
    )
    operation, table, row, kwargs = client.calls[0]
    assert (operation, table) == ("upsert", "attendance_records")
    assert row["status"] == "late"
    assert kwargs == {"on_conflict": "user_id,attendance_date", "ignore_duplicates": True}


def test_supabase_store_delegates_claim(monkeypatch) -> None:
    captured: dict = {}

    def _insert(**kwargs) -> bool:
        captured.update(kwargs)
        return False

    monkeypatch.setattr("app.core.records.insert_verification_record", _insert)
    record = VerificationRecord(
        holder_id="u-42",
        issue_date="2025-03-01",
        scanned_at=datetime(2025, 3, 1, 7, 30, tzinfo=MANILA),
        scanner_id="gate-1",
    )
    assert SupabaseVerificationRecordStore().claim(record) is False
    assert captured["user_id"] == "u-42"
    assert captured["attendance_date"] == "2025-03-01"
    assert captured["scanner_id"] == "gate-1"


@pytest.mark.parametrize(
    "hour,minute,expected",
    [(7, 59, "on_time"), (8, 0, "on_time"), (8, 1, "late")],
)
def test_recorder_classifies_against_cutoff(monkeypatch, hour: int, minute: int, expected: str) -> None:
    captured: dict = {}
    monkeypatch.setattr("app.core.records.insert_attendance_record", lambda **kwargs: captured.update(kwargs))
    monkeypatch.setattr("app.core.config.settings.attendance_timezone", "Asia/Manila")

    SupabaseAttendanceRecorder(late_after="08:00").record(
        "u-42",
        "2025-03-01",
        datetime(2025, 3, 1, hour, minute, tzinfo=MANILA),
    )
    assert captured["status"] == expected


def test_store_backend_selection(monkeypatch) -> None:
    get_verification_store.cache_clear()
    monkeypatch.setattr("app.core.config.settings.verification_store_backend", "memory")
    assert isinstance(get_verification_store(), InMemoryVerificationRecordStore)

    get_verification_store.cache_clear()
    monkeypatch.setattr("app.core.config.settings.verification_store_backend", "supabase")
    assert isinstance(get_verification_store(), SupabaseVerificationRecordStore)

    get_verification_store.cache_clear()
    monkeypatch.setattr("app.core.config.settings.verification_store_backend", "redis")
    with pytest.raises(RuntimeError):
        get_verification_store()
    get_verification_store.cache_clear()
