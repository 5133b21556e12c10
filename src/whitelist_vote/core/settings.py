"""Application settings and configuration.

This module defines all process-level configuration for the whitelist voting
service. Settings are loaded from environment variables with sensible defaults.
The voting thresholds below only seed the ``system_settings`` row; once that
row exists administrators change thresholds through the API instead.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application metadata
    app_name: str = Field(default="Whitelist Vote", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Security and authentication
    secret_key: str = Field(default="change-me", alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )
    # Shared with the chat front end that registers users and requests tokens
    registration_secret: str | None = Field(default=None, alias="REGISTRATION_SECRET")
    # Chat platform id that is registered as administrator
    admin_external_id: int | None = Field(default=None, alias="ADMIN_EXTERNAL_ID")

    # Database configuration
    database_url: str = Field(default="sqlite:///./whitelist.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Expiration sweeper
    sweep_enabled: bool = Field(default=True, alias="SWEEP_ENABLED")
    sweep_interval_seconds: float = Field(default=60.0, alias="SWEEP_INTERVAL_SECONDS")

    # Transient store error retries
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_ms: int = Field(default=1000, alias="RETRY_BASE_DELAY_MS")
    retry_max_delay_ms: int = Field(default=5000, alias="RETRY_MAX_DELAY_MS")

    settings_cache_ttl_seconds: float = Field(default=30.0, alias="SETTINGS_CACHE_TTL_SECONDS")

    # Defaults for the system_settings row
    voting_duration_days: int = Field(default=1, alias="VOTING_DURATION_DAYS")
    voting_duration_hours: int = Field(default=0, alias="VOTING_DURATION_HOURS")
    voting_duration_minutes: int = Field(default=0, alias="VOTING_DURATION_MINUTES")
    min_votes_required: int = Field(default=3, alias="MIN_VOTES_REQUIRED")
    min_participation_percent: float = Field(default=0.0, alias="MIN_PARTICIPATION_PERCENT")
    approval_threshold_percent: float = Field(default=60.0, alias="APPROVAL_THRESHOLD_PERCENT")
    rejection_threshold_percent: float = Field(default=60.0, alias="REJECTION_THRESHOLD_PERCENT")
    negative_threshold_percent: float = Field(default=30.0, alias="NEGATIVE_THRESHOLD_PERCENT")
    rating_cooldown_minutes: int = Field(default=60, alias="RATING_COOLDOWN_MINUTES")
    max_daily_ratings: int = Field(default=10, alias="MAX_DAILY_RATINGS")

    # Reputation rules that are not admin-tunable
    ejection_min_voters: int = Field(default=3, alias="EJECTION_MIN_VOTERS")
    admin_rating_weight: float = Field(default=1.5, alias="ADMIN_RATING_WEIGHT")

    # Whitelist sync (external roster service)
    whitelist_sync_enabled: bool = Field(default=False, alias="WHITELIST_SYNC_ENABLED")
    whitelist_sync_base_url: str | None = Field(default=None, alias="WHITELIST_SYNC_BASE_URL")
    whitelist_sync_token: str | None = Field(default=None, alias="WHITELIST_SYNC_TOKEN")
    whitelist_sync_timeout_seconds: float = Field(
        default=10.0,
        alias="WHITELIST_SYNC_TIMEOUT_SECONDS",
    )

    # Notification webhook
    notifier_webhook_url: str | None = Field(default=None, alias="NOTIFIER_WEBHOOK_URL")
    notifier_timeout_seconds: float = Field(default=5.0, alias="NOTIFIER_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
