"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paystack Configuration
    paystack_secret_key: str = Field(..., description="Paystack secret key (sk_test_...)")
    paystack_public_key: Optional[str] = Field(
        default=None, description="Paystack public key (pk_test_...)"
    )
    paystack_base_url: str = Field(
        default="https://api.paystack.co", description="Paystack API base URL"
    )
    paystack_timeout_seconds: float = Field(
        default=10.0, description="Timeout for a single Paystack request (seconds)"
    )
    payment_callback_url: str = Field(
        default="http://localhost:8000/payments/verify",
        description="URL the gateway redirects the citizen to after checkout",
    )

    # Fees
    application_fee: int = Field(
        default=10000, gt=0, description="Certificate fee in the base currency unit"
    )
    currency: str = Field(default="NGN", description="ISO currency code")

    # Lifecycle policy
    require_payment_before_approval: bool = Field(
        default=False, description="Refuse approval of unpaid applications"
    )
    identifier_max_attempts: int = Field(
        default=5, ge=1, description="Attempts to generate an unused reference/certificate number"
    )

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL (async driver)")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for dashboard caching (disabled when unset)"
    )
    dashboard_cache_ttl: int = Field(default=300, description="Dashboard cache TTL (seconds)")

    # Application Configuration
    app_name: str = Field(default="origin-portal", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(
        default=True, description="JSON log lines; false renders readable console output"
    )
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )

    # Security
    admin_api_key: str = Field(default="", description="API key required on admin routes")
    api_key_header: str = Field(default="X-API-Key", description="API key header name")
    password_hash_rounds: int = Field(default=12, ge=4, le=31, description="bcrypt cost factor")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("paystack_secret_key")
    @classmethod
    def validate_paystack_key(cls, v: str) -> str:
        """Validate the Paystack secret key prefix."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Paystack secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

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
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Paystack test mode."""
        return self.paystack_secret_key.startswith("sk_test_")

    @property
    def application_fee_minor(self) -> int:
        """Fee in the gateway's minor unit (kobo)."""
        return self.application_fee * 100


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
