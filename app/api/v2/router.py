from fastapi import APIRouter

from app.api.v2.routes import auth, credentials

router = APIRouter(prefix="/v2")
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(credentials.router, prefix="/credentials", tags=["credentials"])
