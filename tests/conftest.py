"""Shared pytest configuration for tenantpay tests.

Environment defaults are set before any tenantpay import so that the
module-level Settings instance can be built without a .env file.
"""

import os

os.environ.setdefault("KMS_ENCRYPTION_KEY", "tenantpay-test-master-key-0123456789")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
for _name in (
    "RAZORPAY_KEY_ID",
    "RAZORPAY_KEY_SECRET",
    "RAZORPAY_WEBHOOK_SECRET",
    "STRIPE_SECRET_KEY",
    "STRIPE_PUBLIC_KEY",
    "VITE_STRIPE_PUBLIC_KEY",
    "STRIPE_WEBHOOK_SECRET",
):
    os.environ.pop(_name, None)

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from tenantpay.core.database import Base, create_engine, create_session_maker
from tenantpay.core.kms import reset_key_manager

# Register the gateway tables on Base.metadata
import tenantpay.modules.payment_gateway.models  # noqa: F401


@pytest.fixture(autouse=True)
def reset_kms():
    """Reset KMS key manager around each test."""
    reset_key_manager()
    yield
    reset_key_manager()


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with the gateway schema."""
    engine = create_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_maker(engine)

    await engine.dispose()
