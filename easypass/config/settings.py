"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paystack Configuration
    paystack_secret_key: Optional[str] = Field(
        default=None, description="Paystack secret key (sk_test_... / sk_live_...)"
    )
    paystack_base_url: str = Field(
        default="https://api.paystack.co", description="Paystack API base URL"
    )
    paystack_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for provider calls (seconds)"
    )

    # Test payments
    test_reference_prefixes: Tuple[str, ...] = Field(
        default=("test_", "pay_"),
        description="Reference prefixes that bypass live provider verification",
    )
    test_payment_amount_minor: int = Field(
        default=1000, gt=0, description="Nominal test payment amount in minor units"
    )
    test_payment_currency: str = Field(default="NGN", description="Test payment currency")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./easypass.db", description="Async database URL"
    )
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Authentication
    jwt_secret: str = Field(default="change-me-in-production", description="JWT signing secret")
    jwt_issuer: str = Field(default="easypass-api", description="JWT issuer claim")
    jwt_audience: str = Field(default="easypass-client", description="JWT audience claim")
    jwt_expire_days: int = Field(default=7, gt=0, description="JWT lifetime in days")

    # Application Configuration
    app_name: str = Field(default="easypass", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=5000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )
    history_max_limit: int = Field(default=100, gt=0, description="Maximum page size for history")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("paystack_secret_key")
    @classmethod
    def validate_paystack_key(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank keys as missing; reject keys with an unknown prefix."""
        if v is None or not v.strip():
            return None
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

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using a Paystack test key."""
        return bool(self.paystack_secret_key) and self.paystack_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
