"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:5173"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (attribution store, config cache, locks, realtime channel)
    redis_url: str = "redis://localhost:6379/0"

    # Auth - tokens are issued elsewhere, we only verify them
    jwt_secret: str = ""
    allowed_origins: str = ""  # Comma-separated CORS origins (auto-includes localhost in dev)

    # Sentry
    sentry_dsn: str = ""

    # Attribution
    attribution_window_days: int = 30
    visitor_cookie_name: str = "visitor_id"
    visitor_cookie_max_age_days: int = 365

    # Tier thresholds used when platform_config has no valid affiliate_tiers row
    default_silver_threshold: float = 500
    default_gold_threshold: float = 2000
    default_platinum_threshold: float = 5000
    tier_config_cache_ttl: int = 60  # seconds

    # Payouts
    currency: str = "ILS"
    payout_reserve_pending: bool = False  # Count pending payouts as reserved at request time
    payout_lock_ttl: int = 15  # seconds
    payout_lock_wait: float = 5.0  # seconds a second request waits before failing

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
