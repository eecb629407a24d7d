"""
Unit tests for Pydantic Settings configuration.

Tests settings loading and validation.
"""

import pytest
from pydantic import ValidationError

from app.config.settings import Settings


class TestSettings:
    """Tests for Settings configuration."""

    def test_settings_loads_from_env(self):
        """Settings should load gateway and auth secrets from environment variables."""
        from app.config.settings import settings

        assert settings.gateway_key_id
        assert settings.gateway_key_secret
        assert settings.gateway_webhook_secret
        assert settings.auth_jwt_secret

    def test_settings_has_defaults(self):
        """Settings should have sensible defaults."""
        settings = Settings(_env_file=None)

        assert settings.refund_window_days == 7
        assert settings.default_currency == "INR"
        assert settings.auth_jwt_algorithm == "HS256"
        assert settings.gateway_base_url.startswith("https://")

    def test_is_production_property(self):
        settings = Settings(_env_file=None, environment="development")

        assert settings.is_production is False
        assert settings.is_development is True

    def test_allowed_origins_includes_localhost(self):
        settings = Settings(_env_file=None)

        assert "http://localhost:5173" in settings.allowed_origins
        assert "http://localhost:3000" in settings.allowed_origins

    def test_currency_is_uppercased(self):
        assert Settings(_env_file=None, default_currency="inr").default_currency == "INR"


class TestSettingsValidation:
    """Startup validation."""

    def test_production_requires_secrets(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                _env_file=None,
                environment="production",
                database_url=None,
                gateway_key_id="",
                gateway_key_secret="",
                gateway_webhook_secret="",
                auth_jwt_secret=None,
            )

        message = str(exc_info.value)
        assert "GATEWAY_WEBHOOK_SECRET" in message
        assert "DATABASE_URL" in message

    def test_production_with_secrets(self):
        settings = Settings(
            _env_file=None,
            environment="production",
            database_url="postgresql://billing@db/billing",
            gateway_key_id="rzp_live_key",
            gateway_key_secret="live_secret",
            gateway_webhook_secret="live_webhook_secret",
            auth_jwt_secret="live-auth-secret",
        )

        assert settings.is_production is True

    def test_negative_refund_window_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, refund_window_days=-1)
