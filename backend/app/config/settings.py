"""
Application Settings for Podcast Billing

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The payment gateway speaks the Razorpay REST dialect:
    - GATEWAY_KEY_ID / GATEWAY_KEY_SECRET: basic auth and payment signatures
    - GATEWAY_WEBHOOK_SECRET: HMAC key for webhook bodies
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    frontend_url: str = "http://localhost:5173"
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Payment Gateway
    gateway_key_id: str = ""
    gateway_key_secret: str = ""
    gateway_webhook_secret: str = ""
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 15.0

    # Billing Rules
    default_currency: str = "INR"
    refund_window_days: int = 7

    # Authentication (HS256 bearer tokens from the identity provider)
    auth_jwt_secret: Optional[str] = None
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: str = "authenticated"
    auth_jwt_issuer: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Require gateway and auth secrets outside development."""
        if self.refund_window_days < 0:
            raise ValueError("REFUND_WINDOW_DAYS must not be negative")

        self.default_currency = self.default_currency.upper()

        if self.is_production:
            required = {
                "DATABASE_URL": self.database_url,
                "GATEWAY_KEY_ID": self.gateway_key_id,
                "GATEWAY_KEY_SECRET": self.gateway_key_secret,
                "GATEWAY_WEBHOOK_SECRET": self.gateway_webhook_secret,
                "AUTH_JWT_SECRET": self.auth_jwt_secret,
            }
            missing = [name for name, value in required.items() if not value]
            if missing:
                raise ValueError(
                    f"Missing required settings in production: {', '.join(missing)}"
                )

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
