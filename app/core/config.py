from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    # Shared secret for scheduler and payment-confirmation callers
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="classifieds_ledger", alias="MONGODB_DB_NAME")

    # Redis (arq)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Storage
    storage_backend: str = Field(default="local", alias="STORAGE_BACKEND")
    storage_local_path: str = Field(default="./uploads", alias="STORAGE_LOCAL_PATH")
    gcs_bucket_name: str | None = Field(default=None, alias="GCS_BUCKET_NAME")
    story_media_bucket: str = Field(default="story-media", alias="STORY_MEDIA_BUCKET")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Payouts (currency units)
    payout_min_amount: int = 100

    # Sweeps
    boost_sweep_minutes: int = 5
    story_sweep_minutes: int = 15
    boost_expiry_notice_hours: int = 24
    sweep_batch_size: int = 500
    renewal_sweep_minutes: int = 60
    renewal_window_hours: int = 24
    recovery_sweep_minutes: int = 10
    # half-finished writes younger than this may still be in flight
    recovery_grace_minutes: int = 10
    recovery_lookback_days: int = 7

    # Ledger write protocol
    ledger_max_attempts: int = 8
    compensation_attempts: int = 3


@lru_cache
def get_settings() -> Settings:
    return Settings()
