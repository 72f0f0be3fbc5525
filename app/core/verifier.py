from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any

from app.core.config import settings
from app.core.credential import MalformedPayloadError, UnsupportedVersionError, decode_payload
from app.core.local_time import (
    attendance_tz,
    local_midnight,
    next_local_midnight,
    parse_issue_date,
    seconds_between,
    to_local,
)
from app.core.records import (
    AttendanceRecorder,
    SupabaseAttendanceRecorder,
    VerificationRecord,
    VerificationRecordStore,
    get_verification_store,
)
from app.core.signature import SignatureDeriver, get_signature_deriver, signatures_match
from app.observability.perf_metrics import verification_metrics
from app.schemas.common import CredentialPayload, VerificationReason

logger = logging.getLogger(__name__)

REASON_MESSAGES: dict[VerificationReason, str] = {
    VerificationReason.ACCEPTED: "Attendance recorded.",
    VerificationReason.MALFORMED_PAYLOAD: "This is not a valid attendance QR code.",
    VerificationReason.UNSUPPORTED_VERSION: "This QR code was made by a newer app version. Update the scanner app.",
    VerificationReason.EXPIRED: "QR expired. Ask the holder to refresh their QR code for today.",
    VerificationReason.SIGNATURE_MISMATCH: "QR code failed the security check. It may have been altered.",
    VerificationReason.ALREADY_RECORDED: "Attendance was already recorded for this holder today.",
}


@dataclass(frozen=True)
class VerificationOutcome:
    reason: VerificationReason
    scanned_at: datetime
    payload: CredentialPayload | None = None
    recorded: bool = False

    @property
    def accepted(self) -> bool:
        return self.reason is VerificationReason.ACCEPTED

    @property
    def message(self) -> str:
        return REASON_MESSAGES[self.reason]

    @property
    def holder_id(self) -> str | None:
        return self.payload.user_id if self.payload else None

    @property
    def issue_date(self) -> str | None:
        return self.payload.date if self.payload else None


class CredentialVerifier:
    """Server-side check of a scanned daily credential.

    Only the final claim on the store mutates state, so every rejection can
    be retried safely. Store outages surface as ``RuntimeError`` and are
    never reported as a credential problem.
    """

    def __init__(
        self,
        store: VerificationRecordStore,
        recorder: AttendanceRecorder | None = None,
        *,
        derive: SignatureDeriver | None = None,
        tz: tzinfo | None = None,
        grace: timedelta | None = None,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._derive = derive or get_signature_deriver()
        self._tz = tz or attendance_tz()
        self._grace = grace if grace is not None else timedelta(seconds=settings.credential_grace_seconds)

    def within_window(self, issue_date: str, scanned_at: datetime) -> bool:
        local_scan = to_local(scanned_at, self._tz)
        today = local_scan.date()
        issued = parse_issue_date(issue_date)
        grace_seconds = self._grace.total_seconds()

        if issued == today:
            return True
        if issued == today - timedelta(days=1):
            since_midnight = seconds_between(local_midnight(today, self._tz), local_scan)
            return since_midnight <= grace_seconds
        if issued == today + timedelta(days=1):
            # Holder clock slightly ahead of the verifier's.
            until_midnight = seconds_between(local_scan, next_local_midnight(local_scan, self._tz))
            return until_midnight <= grace_seconds
        return False

    def _reject(
        self,
        reason: VerificationReason,
        scanned_at: datetime,
        payload: CredentialPayload | None = None,
    ) -> VerificationOutcome:
        logger.info(
            "Credential rejected: reason=%s holder=%s date=%s",
            reason.value,
            payload.user_id if payload else None,
            payload.date if payload else None,
        )
        verification_metrics.record_outcome(reason.value)
        return VerificationOutcome(reason=reason, scanned_at=scanned_at, payload=payload)

    def verify(
        self,
        payload: str | bytes | Mapping[str, Any],
        scanned_at: datetime,
        *,
        scanner_id: str | None = None,
    ) -> VerificationOutcome:
        scanned_at = to_local(scanned_at, self._tz)
        try:
            credential = decode_payload(payload)
        except UnsupportedVersionError:
            return self._reject(VerificationReason.UNSUPPORTED_VERSION, scanned_at)
        except MalformedPayloadError:
            return self._reject(VerificationReason.MALFORMED_PAYLOAD, scanned_at)

        if not self.within_window(credential.date, scanned_at):
            return self._reject(VerificationReason.EXPIRED, scanned_at, credential)

        expected = self._derive(credential.user_id, credential.date)
        if not signatures_match(expected, credential.sig):
            return self._reject(VerificationReason.SIGNATURE_MISMATCH, scanned_at, credential)

        record = VerificationRecord(
            holder_id=credential.user_id,
            issue_date=credential.date,
            scanned_at=scanned_at,
            scanner_id=scanner_id,
        )
        try:
            claimed = self._store.claim(record)
        except RuntimeError:
            verification_metrics.record_transient_failure()
            raise
        if not claimed:
            return self._reject(VerificationReason.ALREADY_RECORDED, scanned_at, credential)

        verification_metrics.record_outcome(VerificationReason.ACCEPTED.value)
        logger.info(
            "Credential accepted: holder=%s date=%s scanner=%s",
            credential.user_id,
            credential.date,
            scanner_id,
        )
        return VerificationOutcome(
            reason=VerificationReason.ACCEPTED,
            scanned_at=scanned_at,
            payload=credential,
            recorded=self._hand_off(record),
        )

    def _hand_off(self, record: VerificationRecord) -> bool:
        if self._recorder is None:
            return False
        try:
            self._recorder.record(record.holder_id, record.issue_date, record.scanned_at)
        except RuntimeError:
            logger.warning(
                "Attendance recorder failed after verification: holder=%s date=%s",
                record.holder_id,
                record.issue_date,
                exc_info=True,
            )
            return False
        return True


def get_credential_verifier() -> CredentialVerifier:
    return CredentialVerifier(get_verification_store(), SupabaseAttendanceRecorder())
