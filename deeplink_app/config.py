from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Environment
    environment: str = "development"
    debug: bool = True

    # Application
    app_name: str = "Deeplink Resolver"
    app_version: str = "1.0.0"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    trust_proxy: bool = False  # Honour X-Forwarded-For / X-Real-IP only behind a known proxy
    public_scheme: str = "https"  # Scheme used when building referral URLs

    # Database
    database_url: str = "sqlite:///./deeplinks.db"

    # Deferred deep links
    deferred_link_ttl_seconds: int = 24 * 60 * 60
    deferred_match_window_seconds: int = 2 * 60 * 60
    deferred_min_score: int = 2  # 0-4, signals required for a confident match
    screen_tolerance_px: int = 50

    # Token generation
    referrer_token_length: int = 16  # 64-symbol alphabet -> 96 bits
    referral_code_length: int = 10

    # Referrals
    referral_expiration_days: int = 30  # Default for apps without their own value

    # Auth (disabled when unset)
    api_key: Optional[str] = None
    cleanup_key: Optional[str] = None

    # Cache settings (host -> app lookups)
    cache_backend: str = "memory"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 300  # Cache TTL in seconds (5 minutes)

    # Sweeper
    sweeper_enabled: bool = True
    sweeper_interval_seconds: int = 60 * 60

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# Create settings instance
settings = Settings()
