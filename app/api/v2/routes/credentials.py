import asyncio
import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse

from app.core.auth import AuthContext, require_admin, require_authenticated
from app.core.cache import TTLCache
from app.core.config import settings
from app.core.credential import (
    credential_export_filename,
    credential_watermark,
    encode_credential,
    render_credential_svg,
    serialize_payload,
)
from app.core.local_time import attendance_tz, holder_today, next_local_midnight
from app.core.rotation import RotationClock, RotationTick, time_until_midnight
from app.core.signature import get_signature_deriver
from app.core.verifier import get_credential_verifier
from app.integrations.supabase_client import get_holder_profile
from app.observability.perf_metrics import api_metric_key, perf_metrics, verification_metrics
from app.schemas.common import (
    CredentialPayload,
    CredentialResponse,
    CredentialVerifyRequest,
    HolderProfile,
    RotationStatusResponse,
    VerificationMetricsResponse,
    VerificationReason,
    VerificationResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_PROFILE_CACHE = TTLCache(settings.profile_cache_ttl_seconds)

_REJECTION_STATUS = {
    VerificationReason.MALFORMED_PAYLOAD: status.HTTP_422_UNPROCESSABLE_ENTITY,
    VerificationReason.UNSUPPORTED_VERSION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    VerificationReason.EXPIRED: status.HTTP_410_GONE,
    VerificationReason.SIGNATURE_MISMATCH: status.HTTP_401_UNAUTHORIZED,
    VerificationReason.ALREADY_RECORDED: status.HTTP_409_CONFLICT,
}


def _now() -> datetime:
    return datetime.now(attendance_tz())


def _load_holder(auth: AuthContext) -> HolderProfile:
    try:
        row = _PROFILE_CACHE.get_or_load(auth.user_id, lambda: get_holder_profile(auth.user_id))
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Holder profile not found.")
    return HolderProfile(
        user_id=str(row.get("user_id") or auth.user_id),
        name=str(row.get("name") or ""),
        section=row.get("section"),
        parent_number=row.get("parent_number"),
    )


def _issue_credential(holder: HolderProfile, issue_date: str) -> CredentialPayload:
    derive = get_signature_deriver()
    return encode_credential(holder, issue_date, derive(holder.user_id, issue_date))


def _credential_body(payload: CredentialPayload) -> dict:
    return {
        "payload": payload.model_dump(),
        "qr_data": serialize_payload(payload),
        "watermark": credential_watermark(payload),
    }


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@router.get("/today", response_model=CredentialResponse)
def get_today_credential(auth: AuthContext = Depends(require_authenticated)):
    holder = _load_holder(auth)
    now = _now()
    payload = _issue_credential(holder, holder_today(now))
    return CredentialResponse(
        **_credential_body(payload),
        valid_until=next_local_midnight(now),
        countdown=time_until_midnight(now),
    )


@router.get("/today/qr.svg")
def download_today_credential(auth: AuthContext = Depends(require_authenticated)):
    holder = _load_holder(auth)
    payload = _issue_credential(holder, holder_today(_now()))
    return Response(
        content=render_credential_svg(payload),
        media_type="image/svg+xml",
        headers={
            "Content-Disposition": f'attachment; filename="{credential_export_filename(payload)}"',
            "Cache-Control": "no-store",
        },
    )


@router.get("/rotation", response_model=RotationStatusResponse)
def get_rotation_status(auth: AuthContext = Depends(require_authenticated)):
    now = _now()
    return RotationStatusResponse(
        current_date=holder_today(now),
        timezone=settings.attendance_timezone,
        valid_until=next_local_midnight(now),
        countdown=time_until_midnight(now),
    )


async def _credential_events(holder: HolderProfile) -> AsyncIterator[str]:
    ticks: asyncio.Queue[RotationTick] = asyncio.Queue()
    clock = RotationClock(on_tick=ticks.put_nowait)
    yield _sse("credential", _credential_body(_issue_credential(holder, clock.current_date)))
    async with clock:
        while True:
            tick = await ticks.get()
            if tick.rotated:
                yield _sse("credential", _credential_body(_issue_credential(holder, tick.current_date)))
            yield _sse(
                "countdown",
                {
                    "current_date": tick.current_date,
                    "countdown": tick.countdown.formatted(),
                    "valid_until": tick.valid_until.isoformat(),
                },
            )


@router.get("/stream")
def stream_credential(auth: AuthContext = Depends(require_authenticated)):
    holder = _load_holder(auth)
    logger.info("Opening credential stream for user_id=%s", auth.user_id)
    return StreamingResponse(
        _credential_events(holder),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-store"},
    )


@router.post("/verify", response_model=VerificationResponse)
def verify_credential(
    payload: CredentialVerifyRequest,
    auth: AuthContext = Depends(require_admin),
):
    scanned_at = _now()
    try:
        outcome = get_credential_verifier().verify(
            payload.payload,
            scanned_at,
            scanner_id=payload.scanner_id,
        )
    except RuntimeError as exc:
        logger.warning("Verification store unavailable for scanner_id=%s: %s", payload.scanner_id, exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not outcome.accepted:
        raise HTTPException(
            status_code=_REJECTION_STATUS[outcome.reason],
            detail={
                "reason": outcome.reason.value,
                "message": outcome.message,
                "holder_id": outcome.holder_id,
                "issue_date": outcome.issue_date,
            },
        )

    credential = outcome.payload
    return VerificationResponse(
        accepted=True,
        reason=outcome.reason,
        message=outcome.message,
        holder_id=credential.user_id,
        holder_name=credential.name,
        section=credential.section,
        issue_date=credential.date,
        version=credential.v,
        recorded=outcome.recorded,
        scanned_at=outcome.scanned_at,
        scanner_id=payload.scanner_id,
        offline_mode=payload.offline_mode,
    )


@router.get("/metrics", response_model=VerificationMetricsResponse)
def get_verification_metrics(request: Request, auth: AuthContext = Depends(require_admin)):
    snapshot = verification_metrics.snapshot()
    # /verify is mounted beside /metrics.
    verify_path = request.url.path.rsplit("/", 1)[0] + "/verify"
    latency = perf_metrics.get_api_summary(api_metric_key("POST", verify_path)) or {}
    return VerificationMetricsResponse(
        generated_at=snapshot["generated_at"],
        outcomes=snapshot["outcomes"],
        transient_failures=snapshot["transient_failures"],
        latency_ms=latency,
    )
