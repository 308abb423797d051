"""Application settings and configuration.

This module defines all configuration options for the Lumen federation engine.
Settings are loaded from environment variables with sensible defaults.
"""

from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Lumen Federation", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./lumen.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis backs the public key cache when configured
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Federation identity
    base_address: str = Field(default="https://localhost", alias="FEDERATION_BASE_ADDRESS")
    user_agent: str = Field(default="Lumen/0.1.0", alias="FEDERATION_USER_AGENT")
    http_timeout_seconds: float = Field(default=10.0, alias="FEDERATION_HTTP_TIMEOUT_SECONDS")

    # Outbound delivery retry policy (per destination inbox)
    delivery_max_attempts: int = Field(default=3, alias="FEDERATION_DELIVERY_MAX_ATTEMPTS")
    delivery_backoff_base_seconds: float = Field(
        default=2.0,
        alias="FEDERATION_DELIVERY_BACKOFF_BASE_SECONDS",
    )
    delivery_backoff_max_seconds: float = Field(
        default=60.0,
        alias="FEDERATION_DELIVERY_BACKOFF_MAX_SECONDS",
    )

    # Inbound job retry policy (per queued envelope)
    inbox_max_attempts: int = Field(default=5, alias="FEDERATION_INBOX_MAX_ATTEMPTS")
    inbox_backoff_base_seconds: float = Field(
        default=5.0,
        alias="FEDERATION_INBOX_BACKOFF_BASE_SECONDS",
    )
    inbox_backoff_max_seconds: float = Field(
        default=300.0,
        alias="FEDERATION_INBOX_BACKOFF_MAX_SECONDS",
    )

    # Signature verification
    signature_time_window_seconds: int = Field(
        default=300,
        alias="FEDERATION_SIGNATURE_TIME_WINDOW_SECONDS",
    )
    public_key_cache_ttl_seconds: int = Field(
        default=3600,
        alias="FEDERATION_PUBLIC_KEY_CACHE_TTL_SECONDS",
    )

    # Background work
    blocked_domains_refresh_seconds: float = Field(
        default=60.0,
        alias="FEDERATION_BLOCKED_DOMAINS_REFRESH_SECONDS",
    )
    worker_count: int = Field(default=2, alias="FEDERATION_WORKER_COUNT")
    workers_enabled: bool = Field(default=True, alias="FEDERATION_WORKERS_ENABLED")

    # arq job queues
    queue_redis_url: str = Field(
        default="redis://localhost:6379/0", alias="FEDERATION_QUEUE_REDIS_URL"
    )
    queue_name: str = Field(default="lumen:federation", alias="FEDERATION_QUEUE_NAME")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Returns:
            Database URL compatible with synchronous database drivers
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

    @property
    def instance_host(self) -> str:
        """Host name of this instance, derived from the base address."""
        return (urlparse(self.base_address).hostname or "localhost").lower()


settings = Settings()  # type: ignore[call-arg]
