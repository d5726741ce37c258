"""Process start-up wiring for applications embedding tenantpay."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantpay.core.config import Settings, settings as default_settings
from tenantpay.core.logging import setup_logging
from tenantpay.core.tracing import setup_tracing
from tenantpay.modules.payment_gateway.service import (
    PaymentGatewayService,
    create_payment_gateway_factory,
)

logger = logging.getLogger(__name__)


def configure_observability(settings: Optional[Settings] = None) -> None:
    """Install structured logging and tracing from settings."""
    settings = settings or default_settings

    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        include_stack_trace=True,
    )

    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
    )


def create_payment_service(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    settings: Optional[Settings] = None,
) -> PaymentGatewayService:
    """Create the payment service with a fresh, empty gateway cache.

    Call once per process; pass the service to request handlers rather than
    creating one per request.
    """
    factory = create_payment_gateway_factory(session_factory=session_factory, settings=settings)
    logger.info(
        f"Payment gateway service ready with providers: "
        f"{', '.join(g.id for g in factory.registry.supported_gateways() if g.implemented)}"
    )
    return PaymentGatewayService(factory)
