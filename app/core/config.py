"""Application settings for the inventory sync service."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Core application settings."""

    APP_NAME: str = "Inventory Sync Service"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # API
    API_V1_STR: str = "/api/v1"
    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])

    # Database
    DATABASE_URL: str | None = None

    # Secret used to derive the Fernet key for credential columns
    ENCRYPTION_SECRET: str = Field(default="dev-encryption-secret", description="Secret for credential encryption at rest")

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Shopify
    SHOPIFY_API_VERSION: str = "2024-01"
    SHOPIFY_WRITE_COOLDOWN_SECONDS: float = 0.5

    # WooCommerce (servers typically allow ~25 requests per 30 seconds)
    WOOCOMMERCE_WRITE_COOLDOWN_SECONDS: float = 1.2

    # Etsy
    ETSY_WRITE_COOLDOWN_SECONDS: float = 0.1
    ETSY_REDIRECT_URI: str = "posbycirvex://oauth/callback"
    OAUTH_PENDING_TTL_SECONDS: int = 600

    # Synchronization
    SYNC_INTERVAL_MINUTES: int = 15
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_MAX_CONCURRENCY: int = 4
    SYNC_CONFLICT_POLICY: str = Field(default="local_wins", description="local_wins or manual_review")
    SYNC_REQUEST_TIMEOUT_SECONDS: float = 300.0
    TOKEN_REFRESH_BUFFER_MINUTES: int = 5

    # Status broadcasts
    STATUS_BROADCAST_MIN_INTERVAL_SECONDS: float = 1.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
