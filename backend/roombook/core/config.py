# backend/roombook/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = "development"
    database_url: str = Field(
        default="sqlite:///./roombook.db",
        description="SQLAlchemy database URL (PostgreSQL in production)",
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Celery broker URL")
    is_testing: bool = False  # Set to True when running tests

    # Auth
    jwt_secret_key: SecretStr = Field(
        default=SecretStr("dev-only-secret-change-me"),
        description="HMAC secret used to verify bearer tokens",
    )
    jwt_algorithm: str = "HS256"
    cron_secret: Optional[SecretStr] = Field(
        default=None,
        description="Shared secret for the scheduled cleanup caller (Bearer token)",
    )

    # Payment gateway (Asaas)
    asaas_api_key: Optional[SecretStr] = None
    asaas_sandbox: bool = True
    asaas_mock_mode: bool = False
    asaas_webhook_token: Optional[SecretStr] = None
    asaas_timeout_seconds: float = 20.0
    app_public_url: str = "http://localhost:3000"

    # Booking rules
    business_timezone: str = "America/Sao_Paulo"
    cleanup_buffer_minutes: int = Field(
        default=30, ge=0, description="Turnaround time added after an existing booking"
    )
    min_advance_minutes: int = Field(
        default=30, ge=0, description="Lead time required when a cash payment is pending"
    )
    booking_window_days: int = Field(default=30, ge=1)
    pending_booking_expiration_hours: int = Field(default=24, ge=1)
    stale_pending_fallback_hours: int = Field(default=24, ge=1)
    cleanup_batch_size: int = Field(default=100, ge=1, le=1000)

    # Payments
    min_payment_amount_pix_cents: int = 100
    min_payment_amount_card_cents: int = 500

    # Coupons
    coupons_enabled: bool = True

    # Contingency flags
    contingency_cache_ttl_seconds: float = 30.0

    # Use ConfigDict instead of Config class (Pydantic V2 style)
    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cron_secret", "asaas_api_key", "asaas_webhook_token", mode="before")
    @classmethod
    def _blank_secret_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def asaas_base_url(self) -> str:
        if self.asaas_sandbox:
            return "https://sandbox.asaas.com/api/v3"
        return "https://api.asaas.com/api/v3"

    @property
    def payment_gateway_mock_mode(self) -> bool:
        """Fake gateway when no API key is configured or mock mode is forced."""
        return self.asaas_api_key is None or bool(self.asaas_mock_mode)

    def get_database_url(self) -> str:
        return self.database_url

    def min_payment_amount_cents(self, method: str) -> int:
        if method.upper() == "CARD":
            return self.min_payment_amount_card_cents
        return self.min_payment_amount_pix_cents


settings = Settings()
