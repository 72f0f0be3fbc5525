from dataclasses import dataclass
import hashlib

from fastapi import Depends, HTTPException, Request, status

from app.core.cache import TTLCache
from app.core.config import settings
from app.integrations.supabase_client import get_supabase_client, resolve_user_role


@dataclass
class AuthContext:
    user_id: str
    email: str | None
    role: str
    access_token: str


_ROLE_CACHE = TTLCache(settings.role_cache_ttl_seconds)
_AUTH_CACHE = TTLCache(settings.auth_cache_ttl_seconds)


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token.",
        )
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token is empty.",
        )
    return token


def _resolve_role(user_id: str) -> str:
    return _ROLE_CACHE.get_or_load(user_id, lambda: resolve_user_role(user_id))


def verify_access_token(access_token: str) -> AuthContext:
    cache_key = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
    cached_auth = _AUTH_CACHE.get(cache_key)
    if cached_auth:
        return cached_auth

    try:
        client = get_supabase_client()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    try:
        user_response = client.auth.get_user(access_token)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access token.",
        ) from exc

    user = getattr(user_response, "user", None)
    if not user or not getattr(user, "id", None):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authenticated user not found.",
        )

    user_id = str(user.id)
    auth_context = AuthContext(
        user_id=user_id,
        email=getattr(user, "email", None),
        role=_resolve_role(user_id),
        access_token=access_token,
    )
    _AUTH_CACHE.set(cache_key, auth_context)
    return auth_context


def get_current_auth(request: Request) -> AuthContext:
    token = _extract_bearer_token(request)
    return verify_access_token(token)


def require_authenticated(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    return auth


def require_admin(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
    if auth.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    return auth
