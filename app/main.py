import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.api.v2.router import router as v2_router
from app.core.config import settings
from app.core.local_time import attendance_tz, holder_today
from app.middleware.correlation import CorrelationIdMiddleware
from app.middleware.performance import ApiPerformanceMiddleware
from app.schemas.errors import ErrorBody, ErrorEnvelope

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(ApiPerformanceMiddleware)
logger = logging.getLogger(__name__)

cors_origins = [
    origin.strip()
    for origin in settings.api_cors_allowed_origins.split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["http://localhost:5173"],
    allow_credentials=settings.api_cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1024)

app.include_router(v2_router)


@app.on_event("startup")
async def startup_tasks() -> None:
    # Fail fast on an unknown zone name rather than on the first scan.
    attendance_tz()
    logger.info(
        "Credential service ready: timezone=%s signing=%s store=%s",
        settings.attendance_timezone,
        "keyed" if settings.credential_signing_secret else "rolling-hash",
        settings.verification_store_backend,
    )


@app.get("/health")
def health():
    return {
        "ok": True,
        "service": settings.app_name,
        "env": settings.app_env,
        "api_version": settings.api_version,
        "supabase_configured": bool(
            settings.supabase_url and settings.supabase_service_role_key
        ),
        "credentials": {
            "timezone": settings.attendance_timezone,
            "today": holder_today(),
            "grace_seconds": settings.credential_grace_seconds,
            "keyed_signatures": bool(settings.credential_signing_secret),
            "verification_store": settings.verification_store_backend,
        },
    }


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = getattr(request.state, "correlation_id", "n/a")
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    envelope = ErrorEnvelope(
        error=ErrorBody(
            code="internal_error",
            message=str(exc),
            correlation_id=correlation_id,
        )
    )
    return JSONResponse(status_code=500, content=envelope.model_dump())
