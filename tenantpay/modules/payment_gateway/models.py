"""Payment gateway configuration model.

One row per organization and provider configuration. Secrets are stored
KMS-encrypted. This layer reads the rows; the administrative workflow
that writes them must invalidate the gateway cache after every change.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tenantpay.core.database import Base


class GatewayProvider(str, Enum):
    """Payment gateway provider keys."""
    RAZORPAY = "razorpay"
    STRIPE = "stripe"
    CASHFREE = "cashfree"
    PAYU = "payu"
    PAYONEER = "payoneer"


class GatewayEnvironment(str, Enum):
    """Provider environment a configuration targets."""
    SANDBOX = "sandbox"
    PRODUCTION = "production"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentGatewayConfig(Base):
    """Per-organization payment gateway configuration."""

    __tablename__ = "payment_gateway_configs"
    __table_args__ = (
        Index("ix_payment_gateway_configs_org_provider", "organization_id", "provider"),
        Index("ix_payment_gateway_configs_org_default", "organization_id", "is_default"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Encrypted credentials
    api_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    api_secret_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    webhook_secret_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    public_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    environment: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GatewayEnvironment.SANDBOX.value
    )

    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentGatewayConfig(organization={self.organization_id}, "
            f"provider={self.provider}, default={self.is_default}, active={self.is_active})>"
        )
