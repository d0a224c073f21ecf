"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SSLCOMMERZ_SANDBOX_URL = "https://sandbox.sslcommerz.com"
SSLCOMMERZ_LIVE_URL = "https://securepay.sslcommerz.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_name: str = Field(default="payment-reconciliation", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="JSON log lines (console rendering when false)")
    debug: bool = Field(default=False, description="Debug mode")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./payments.db",
        description="SQLAlchemy async connection URL",
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )

    # SSLCommerz Gateway
    sslcommerz_store_id: str = Field(default="", description="SSLCommerz store id")
    sslcommerz_store_password: str = Field(default="", description="SSLCommerz store password")
    sslcommerz_sandbox: bool = Field(default=True, description="Use the SSLCommerz sandbox host")
    gateway_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Upper bound for a gateway session request"
    )
    gateway_failure_threshold: int = Field(
        default=5, description="Consecutive gateway failures before the breaker opens"
    )
    gateway_reset_timeout_seconds: int = Field(
        default=60, description="Seconds an open breaker waits before a trial call"
    )
    currency: str = Field(default="BDT", min_length=3, max_length=3, description="Payment currency")

    # Public URLs
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL used for gateway callbacks",
    )
    frontend_url: str = Field(
        default="http://localhost:3000", description="Frontend base URL for redirect pages"
    )

    # Caller identity (set by the upstream authentication layer)
    principal_id_header: str = Field(default="X-User-Id", description="Authenticated user id header")
    principal_role_header: str = Field(default="X-User-Role", description="Authenticated role header")

    # Reconciliation
    reconcile_max_attempts: int = Field(
        default=3, ge=1, description="Attempts for a reconciliation hitting a transient lock error"
    )

    # Listing
    default_page_size: int = Field(default=10, ge=1, description="Default page size")
    max_page_size: int = Field(default=100, ge=1, description="Largest accepted page size")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def sslcommerz_base_url(self) -> str:
        """Gateway host for the configured mode."""
        return SSLCOMMERZ_SANDBOX_URL if self.sslcommerz_sandbox else SSLCOMMERZ_LIVE_URL

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
