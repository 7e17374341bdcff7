"""Pipeline configuration loaded from environment variables."""
import logging
import os
from typing import Optional

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", name, raw, default)
        return default


class PipelineConfig(BaseModel):
    """Runtime settings for the metrics backfill pipeline."""

    db_path: str = Field("data/adsync.db", description="SQLite database path")
    log_dir: str = Field("logs", description="Directory for per-date debug logs")
    redis_url: str = Field("redis://localhost:6379", description="Redis connection URL")

    shopify_api_version: str = "2024-10"
    meta_api_version: str = "v21.0"
    google_ads_api_version: str = "v17"

    google_ads_client_id: Optional[str] = None
    google_ads_client_secret: Optional[str] = None
    google_ads_developer_token: Optional[str] = None

    max_concurrent_windows: int = Field(3, ge=1)
    backfill_window_months: int = Field(4, ge=1)
    order_window_days: int = Field(7, ge=1)
    page_size: int = Field(50, ge=1, le=250)
    page_delay: float = Field(0.5, ge=0)

    max_fetch_attempts: int = Field(7, ge=1)
    retry_base_delay: float = Field(2.0, ge=0)
    request_timeout: float = Field(60.0, gt=0)
    max_auth_retries: int = Field(2, ge=0)
    auth_retry_delay: float = Field(1.0, ge=0)
    lock_ttl_seconds: int = Field(
        6 * 3600, ge=60, description="Expiry of the per-brand backfill lock"
    )

    api_key: Optional[str] = None

    @property
    def google_configured(self) -> bool:
        return bool(
            self.google_ads_client_id
            and self.google_ads_client_secret
            and self.google_ads_developer_token
        )

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build configuration from ADSYNC_* and platform environment variables."""
        return cls(
            db_path=os.getenv("ADSYNC_DB_PATH", "data/adsync.db"),
            log_dir=os.getenv("ADSYNC_LOG_DIR", "logs"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            shopify_api_version=os.getenv("SHOPIFY_API_VERSION", "2024-10"),
            meta_api_version=os.getenv("META_API_VERSION", "v21.0"),
            google_ads_api_version=os.getenv("GOOGLE_ADS_API_VERSION", "v17"),
            google_ads_client_id=os.getenv("GOOGLE_ADS_CLIENT_ID"),
            google_ads_client_secret=os.getenv("GOOGLE_ADS_CLIENT_SECRET"),
            google_ads_developer_token=os.getenv("GOOGLE_ADS_DEVELOPER_TOKEN"),
            max_concurrent_windows=_env_int("ADSYNC_MAX_CONCURRENT_WINDOWS", 3),
            backfill_window_months=_env_int("ADSYNC_BACKFILL_WINDOW_MONTHS", 4),
            order_window_days=_env_int("ADSYNC_ORDER_WINDOW_DAYS", 7),
            max_fetch_attempts=_env_int("ADSYNC_MAX_FETCH_ATTEMPTS", 7),
            retry_base_delay=_env_float("ADSYNC_RETRY_BASE_DELAY", 2.0),
            lock_ttl_seconds=_env_int("ADSYNC_LOCK_TTL_SECONDS", 6 * 3600),
            api_key=os.getenv("ADSYNC_API_KEY"),
        )
