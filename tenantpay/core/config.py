"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    PROJECT_NAME: str = "Tenant Payments"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Database (read-only access to gateway configuration rows)
    DATABASE_URL: str = "sqlite+aiosqlite:///./tenantpay.db"

    # KMS encryption for stored gateway secrets - REQUIRED
    KMS_ENCRYPTION_KEY: str

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Webhooks - replay window for signed timestamps, 0 disables the check
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Process-wide fallback credentials, used only when an organization
    # has no gateway configuration of its own
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""

    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLIC_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("STRIPE_PUBLIC_KEY", "VITE_STRIPE_PUBLIC_KEY"),
    )
    STRIPE_WEBHOOK_SECRET: str = ""

    # Cashfree REST API version header
    CASHFREE_API_VERSION: str = "2023-08-01"

    # OpenTelemetry
    OTLP_ENDPOINT: Optional[str] = None

    @property
    def has_razorpay_fallback(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)

    @property
    def has_stripe_fallback(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)


settings = Settings()
