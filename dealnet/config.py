"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    site_key: str = "trendsinusa"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (admin dashboard cache only)
    redis_url: str = "redis://localhost:6379/0"

    # Partners
    partners_config_path: str = "config/partners.json"

    # Admin API
    admin_api_token: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical governance alerts

    # Sentry
    sentry_dsn: str = ""

    # Signals
    event_fetch_cap: int = 100_000
    admin_signals_cache_ttl_seconds: int = 300

    # Governance + abuse limits
    governance_cache_ttl_seconds: int = 60
    track_rate_limit_per_minute: int = 120

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
