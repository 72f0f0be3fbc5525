from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class AttendanceStatus(StrEnum):
    ON_TIME = "on_time"
    LATE = "late"
    ABSENT = "absent"


class VerificationReason(StrEnum):
    ACCEPTED = "accepted"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNSUPPORTED_VERSION = "unsupported_version"
    EXPIRED = "expired"
    SIGNATURE_MISMATCH = "signature_mismatch"
    ALREADY_RECORDED = "already_recorded"


class HolderProfile(BaseModel):
    user_id: str
    name: str
    section: str | None = None
    parent_number: str | None = None


class CredentialPayload(BaseModel):
    name: str
    section: str | None = None
    parent_number: str | None = None
    user_id: str
    date: str
    sig: str
    v: int = 2


class Countdown(BaseModel):
    hours: int = Field(ge=0)
    minutes: int = Field(ge=0, le=59)
    seconds: int = Field(ge=0, le=59)

    @property
    def total_seconds(self) -> int:
        return self.hours * 3600 + self.minutes * 60 + self.seconds

    def formatted(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}:{self.seconds:02d}"


class RotationStatusResponse(BaseModel):
    current_date: str
    timezone: str
    valid_until: datetime
    countdown: Countdown


class CredentialResponse(BaseModel):
    payload: CredentialPayload
    qr_data: str
    watermark: str
    valid_until: datetime
    countdown: Countdown


class CredentialVerifyRequest(BaseModel):
    # Raw scanned text, or the already-decoded JSON object.
    payload: str | dict[str, Any]
    scanner_id: str
    offline_mode: bool = False


class VerificationResponse(BaseModel):
    accepted: bool
    reason: VerificationReason
    message: str
    holder_id: str | None = None
    holder_name: str | None = None
    section: str | None = None
    issue_date: str | None = None
    version: int | None = None
    recorded: bool = False
    scanned_at: datetime
    scanner_id: str
    offline_mode: bool = False


class VerificationMetricsResponse(BaseModel):
    generated_at: datetime
    outcomes: dict[str, int] = Field(default_factory=dict)
    transient_failures: int = 0
    latency_ms: dict[str, Any] = Field(default_factory=dict)
