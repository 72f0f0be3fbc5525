from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "local"
    app_name: str = "catholink-api"
    api_version: str = "v2"
    api_cors_allowed_origins: str = "http://localhost:5173,http://localhost:3000"
    api_cors_allow_credentials: bool = True

    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Holder-local civil time zone; credentials rotate at midnight here.
    attendance_timezone: str = "Asia/Manila"
    attendance_late_after: str = "08:00"

    credential_domain: str = "catholink-secure"
    # Empty keeps the legacy rolling-hash signature.
    credential_signing_secret: str = ""
    credential_grace_seconds: int = 900
    credential_tick_seconds: float = 1.0

    verification_store_backend: str = "supabase"

    role_cache_ttl_seconds: int = 60
    auth_cache_ttl_seconds: int = 30
    profile_cache_ttl_seconds: int = 60


settings = Settings()
