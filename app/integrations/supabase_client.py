from datetime import datetime, timezone
from functools import lru_cache
from typing import Any
from time import perf_counter

from supabase import Client, create_client

from app.core.config import settings
from app.observability.perf_metrics import perf_metrics

UNIQUE_VIOLATION_CODE = "23505"

PROFILE_SELECT = "user_id,name,section,parent_number"


def _can_connect() -> bool:
    return bool(settings.supabase_url and settings.supabase_service_role_key)


def _runtime_error_from_exception(exc: Exception) -> RuntimeError:
    message = getattr(exc, "message", None) or str(exc) or "Supabase request failed."
    details = getattr(exc, "details", None)
    hint = getattr(exc, "hint", None)
    parts = [str(message).strip()]
    if details:
        parts.append(f"Details: {details}")
    if hint:
        parts.append(f"Hint: {hint}")
    return RuntimeError(" ".join(part for part in parts if part))


def _is_unique_violation(exc: Exception) -> bool:
    return str(getattr(exc, "code", "") or "") == UNIQUE_VIOLATION_CODE


def _timed_execute(metric_key: str, operation):
    start = perf_counter()
    try:
        return operation()
    finally:
        perf_metrics.record_db(metric_key, (perf_counter() - start) * 1000)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    if not _can_connect():
        raise RuntimeError("Supabase integration not configured.")
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def resolve_user_role(user_id: str) -> str:
    client = get_supabase_client()
    response = _timed_execute(
        "user_roles.select",
        lambda: client.table("user_roles").select("role").eq("user_id", user_id).limit(1).execute(),
    )
    rows = response.data or []
    if rows and rows[0].get("role"):
        return str(rows[0]["role"]).lower()
    return "student"


def get_holder_profile(user_id: str) -> dict[str, Any] | None:
    try:
        client = get_supabase_client()
        response = _timed_execute(
            "profiles.select",
            lambda: client.table("profiles").select(PROFILE_SELECT).eq("user_id", user_id).limit(1).execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise _runtime_error_from_exception(exc) from exc
    rows = response.data or []
    return rows[0] if rows else None


def insert_verification_record(
    *,
    user_id: str,
    attendance_date: str,
    scanned_at: datetime,
    scanner_id: str | None,
) -> bool:
    """Insert the (user, date) verification marker.

    Returns False when the row already exists; the table's unique constraint
    makes this the single atomic check-and-create step.
    """
    try:
        client = get_supabase_client()
        _timed_execute(
            "attendance_verifications.insert",
            lambda: client.table("attendance_verifications")
            .insert(
                {
                    "user_id": user_id,
                    "attendance_date": attendance_date,
                    "scanned_at": scanned_at.astimezone(timezone.utc).isoformat(),
                    "scanner_id": scanner_id,
                }
            )
            .execute(),
        )
    except Exception as exc:  # noqa: BLE001
        if _is_unique_violation(exc):
            return False
        raise _runtime_error_from_exception(exc) from exc
    return True


def insert_attendance_record(
    *,
    user_id: str,
    attendance_date: str,
    scanned_at: datetime,
    status: str,
) -> None:
    try:
        client = get_supabase_client()
        _timed_execute(
            "attendance_records.upsert",
            lambda: client.table("attendance_records")
            .upsert(
                {
                    "user_id": user_id,
                    "attendance_date": attendance_date,
                    "time_in": scanned_at.astimezone(timezone.utc).isoformat(),
                    "status": status,
                },
                on_conflict="user_id,attendance_date",
                ignore_duplicates=True,
            )
            .execute(),
        )
    except Exception as exc:  # noqa: BLE001
        raise _runtime_error_from_exception(exc) from exc
