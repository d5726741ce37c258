"""Tests for process start-up wiring."""

import logging

import pytest

from tenantpay import bootstrap
from tenantpay.core import tracing
from tenantpay.core.logging import SecretRedactionFilter, StructuredFormatter
from tenantpay.modules.payment_gateway import PaymentGatewayService

from stubs import make_settings


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    tracing.shutdown_tracing()


def test_configure_observability(restore_root_logger):
    bootstrap.configure_observability(make_settings(LOG_LEVEL="DEBUG", LOG_JSON=True))

    root = restore_root_logger
    assert root.level == logging.DEBUG
    (handler,) = root.handlers
    assert isinstance(handler.formatter, StructuredFormatter)
    assert any(isinstance(f, SecretRedactionFilter) for f in handler.filters)
    assert tracing._tracer is not None


@pytest.mark.asyncio
async def test_create_payment_service(session_factory):
    service = bootstrap.create_payment_service(session_factory=session_factory, settings=make_settings())

    assert isinstance(service, PaymentGatewayService)
    assert service.factory.cached_count == 0
    assert service.factory.registry.is_registered("cashfree")
    assert service is not bootstrap.create_payment_service(session_factory=session_factory)
