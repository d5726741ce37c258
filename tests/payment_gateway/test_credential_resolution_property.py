"""Property-based tests for credential resolution.

Tests that:
- Tenant configuration always wins over environment credentials
- Environment fallback prefers Razorpay, then Stripe
- A specific provider only falls back to its own environment credentials
- Duplicate qualifying rows resolve to the most recently updated one
- Undecryptable secrets fail closed without leaking ciphertext or plaintext
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings, strategies as st
from sqlalchemy.pool import StaticPool

from tenantpay.core import kms
from tenantpay.core.config import Settings
from tenantpay.core.database import Base, create_engine, create_session_maker
from tenantpay.modules.payment_gateway.credentials import (
    ConfigSource,
    CredentialResolver,
    ResolvedCredentials,
)
from tenantpay.modules.payment_gateway.exceptions import (
    CredentialDecryptionError,
    GatewayNotConfiguredError,
)
from tenantpay.modules.payment_gateway.models import GatewayEnvironment

from stubs import TEST_KMS_KEY, add_config, make_settings

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

RAZORPAY_ENV = {
    "RAZORPAY_KEY_ID": "rzp_test_envkey001",
    "RAZORPAY_KEY_SECRET": "env_razorpay_secret",
    "RAZORPAY_WEBHOOK_SECRET": "env_razorpay_webhook",
}

STRIPE_ENV = {
    "STRIPE_SECRET_KEY": "sk_test_envsecret001",
    "STRIPE_PUBLIC_KEY": "pk_test_envpublic001",
    "STRIPE_WEBHOOK_SECRET": "whsec_envwebhook001",
}


@asynccontextmanager
async def fresh_database():
    """Throwaway in-memory database, one per hypothesis example."""
    engine = create_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield create_session_maker(engine)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
class TestEnvironmentFallback:
    """Fallback to process-wide credentials."""

    @pytest.mark.parametrize(
        "env, expected",
        [
            (RAZORPAY_ENV, "razorpay"),
            (STRIPE_ENV, "stripe"),
            ({**RAZORPAY_ENV, **STRIPE_ENV}, "razorpay"),
        ],
    )
    async def test_default_lookup_uses_fallback_order(self, session_factory, env, expected) -> None:
        resolver = CredentialResolver(session_factory, settings=make_settings(**env))

        config = await resolver.get_gateway_config("org_new")

        assert config.provider == expected
        assert config.id == f"env:{expected}"
        assert config.source == ConfigSource.ENVIRONMENT
        assert config.environment == GatewayEnvironment.PRODUCTION
        assert config.is_default is True

    async def test_no_configuration_and_no_fallback_raises(self, session_factory) -> None:
        resolver = CredentialResolver(session_factory, settings=make_settings())

        with pytest.raises(GatewayNotConfiguredError) as exc_info:
            await resolver.get_gateway_config("org_new")
        assert exc_info.value.provider is None

    async def test_razorpay_fallback_needs_key_and_secret(self, session_factory) -> None:
        resolver = CredentialResolver(
            session_factory, settings=make_settings(RAZORPAY_KEY_ID="rzp_test_only_key")
        )
        with pytest.raises(GatewayNotConfiguredError):
            await resolver.get_gateway_config("org_new")

    async def test_specific_provider_only_falls_back_to_itself(self, session_factory) -> None:
        resolver = CredentialResolver(session_factory, settings=make_settings(**RAZORPAY_ENV))

        with pytest.raises(GatewayNotConfiguredError) as exc_info:
            await resolver.get_gateway_config("org_new", "stripe")
        assert exc_info.value.provider == "stripe"

        config = await resolver.get_gateway_config("org_new", "RAZORPAY")
        assert config.provider == "razorpay"
        assert config.is_default is False

    async def test_tenant_configuration_beats_fallback(self, session_factory) -> None:
        row = await add_config(session_factory, "org_1", "stripe", is_default=True)
        resolver = CredentialResolver(session_factory, settings=make_settings(**RAZORPAY_ENV))

        config = await resolver.get_gateway_config("org_1")

        assert config.id == str(row.id)
        assert config.source == ConfigSource.TENANT

    async def test_environment_credentials_decrypt_from_settings(self, session_factory) -> None:
        resolver = CredentialResolver(
            session_factory, settings=make_settings(**RAZORPAY_ENV, **STRIPE_ENV)
        )

        razorpay = resolver.decrypt(await resolver.get_gateway_config("org_1", "razorpay"))
        assert razorpay.api_key == "rzp_test_envkey001"
        assert razorpay.api_secret == "env_razorpay_secret"
        assert razorpay.webhook_secret == "env_razorpay_webhook"
        assert razorpay.public_key == "rzp_test_envkey001"

        stripe = resolver.decrypt(await resolver.get_gateway_config("org_1", "stripe"))
        assert stripe.api_key == "pk_test_envpublic001"
        assert stripe.api_secret == "sk_test_envsecret001"
        assert stripe.public_key == "pk_test_envpublic001"


@pytest.mark.asyncio
class TestTenantConfiguration:
    """Resolution over the organization's own rows."""

    async def test_specific_provider_ignores_default_flag(self, session_factory) -> None:
        await add_config(session_factory, "org_1", "razorpay", is_default=True)
        stripe_row = await add_config(session_factory, "org_1", "stripe")
        resolver = CredentialResolver(session_factory, settings=make_settings())

        config = await resolver.get_gateway_config("org_1", "stripe")

        assert config.id == str(stripe_row.id)
        assert config.is_default is False

    async def test_inactive_rows_are_invisible(self, session_factory) -> None:
        await add_config(session_factory, "org_1", "razorpay", is_default=True, is_active=False)
        resolver = CredentialResolver(session_factory, settings=make_settings())

        with pytest.raises(GatewayNotConfiguredError):
            await resolver.get_gateway_config("org_1")
        with pytest.raises(GatewayNotConfiguredError):
            await resolver.get_gateway_config("org_1", "razorpay")

    async def test_other_organizations_rows_are_invisible(self, session_factory) -> None:
        await add_config(session_factory, "org_other", "razorpay", is_default=True)
        resolver = CredentialResolver(session_factory, settings=make_settings())

        with pytest.raises(GatewayNotConfiguredError):
            await resolver.get_gateway_config("org_1")

    async def test_equal_timestamps_fall_back_to_greatest_id(self, session_factory) -> None:
        low = uuid.UUID(int=1)
        high = uuid.UUID(int=2)
        for config_id in (high, low):
            await add_config(
                session_factory,
                "org_1",
                "razorpay",
                is_default=True,
                created_at=BASE_TIME,
                updated_at=BASE_TIME,
                config_id=config_id,
            )
        resolver = CredentialResolver(session_factory, settings=make_settings())

        config = await resolver.get_gateway_config("org_1")

        assert config.id == str(high)

    async def test_equal_update_times_fall_back_to_newest_creation(self, session_factory) -> None:
        newer = await add_config(
            session_factory, "org_1", "stripe", created_at=BASE_TIME + timedelta(hours=1),
            updated_at=BASE_TIME + timedelta(days=1), config_id=uuid.UUID(int=1),
        )
        await add_config(
            session_factory, "org_1", "stripe", created_at=BASE_TIME,
            updated_at=BASE_TIME + timedelta(days=1), config_id=uuid.UUID(int=2),
        )
        resolver = CredentialResolver(session_factory, settings=make_settings())

        config = await resolver.get_gateway_config("org_1", "stripe")

        assert config.id == str(newer.id)

    async def test_get_config_by_id_is_scoped_to_organization(self, session_factory) -> None:
        row = await add_config(session_factory, "org_1", "razorpay")
        inactive = await add_config(session_factory, "org_1", "stripe", is_active=False)
        resolver = CredentialResolver(session_factory, settings=make_settings(**STRIPE_ENV))

        config = await resolver.get_config_by_id("org_1", str(row.id))
        assert config.provider == "razorpay"

        for organization_id, config_id in (
            ("org_2", str(row.id)),
            ("org_1", str(inactive.id)),
            ("org_1", str(uuid.uuid4())),
            ("org_1", "not-a-uuid"),
            ("org_1", "env:razorpay"),
        ):
            with pytest.raises(GatewayNotConfiguredError):
                await resolver.get_config_by_id(organization_id, config_id)

        fallback = await resolver.get_config_by_id("org_1", "env:stripe")
        assert fallback.source == ConfigSource.ENVIRONMENT

    async def test_list_puts_default_first(self, session_factory) -> None:
        await add_config(session_factory, "org_1", "razorpay")
        default = await add_config(session_factory, "org_1", "stripe", is_default=True)
        await add_config(session_factory, "org_1", "cashfree", is_active=False)
        resolver = CredentialResolver(session_factory, settings=make_settings())

        configs = await resolver.list_gateway_configs("org_1")

        assert [config.provider for config in configs] == ["stripe", "razorpay"]
        assert configs[0].id == str(default.id)


def test_stripe_public_key_accepts_frontend_alias() -> None:
    aliased = Settings(
        KMS_ENCRYPTION_KEY=TEST_KMS_KEY,
        STRIPE_SECRET_KEY="sk_test_envsecret001",
        VITE_STRIPE_PUBLIC_KEY="pk_test_alias0001",
    )
    assert aliased.STRIPE_PUBLIC_KEY == "pk_test_alias0001"
    assert aliased.has_stripe_fallback


class TestTieBreakProperty:
    """Among duplicate default rows, the most recently updated wins."""

    @pytest.mark.asyncio
    @given(
        offsets=st.lists(
            st.integers(min_value=0, max_value=10_000), min_size=1, max_size=6, unique=True
        ),
    )
    @settings(max_examples=25, deadline=None)
    async def test_most_recently_updated_default_wins(self, offsets) -> None:
        async with fresh_database() as session_factory:
            rows = []
            for offset in offsets:
                rows.append(
                    await add_config(
                        session_factory,
                        "org_1",
                        "razorpay",
                        is_default=True,
                        created_at=BASE_TIME,
                        updated_at=BASE_TIME + timedelta(seconds=offset),
                    )
                )
            resolver = CredentialResolver(session_factory, settings=make_settings())

            config = await resolver.get_gateway_config("org_1")

            newest = max(zip(offsets, rows), key=lambda pair: pair[0])[1]
            assert config.id == str(newest.id)


@pytest.mark.asyncio
class TestDecryption:
    """Secrets are decrypted only on demand and fail closed."""

    async def test_decrypted_credentials_round_trip(self, session_factory) -> None:
        await add_config(
            session_factory, "org_1", "razorpay", is_default=True,
            api_key="rzp_test_tenantkey1", api_secret="tenant_secret_value",
            webhook_secret=None,
        )
        resolver = CredentialResolver(session_factory, settings=make_settings())
        config = await resolver.get_gateway_config("org_1")

        with resolver.decrypted(config) as credentials:
            assert credentials.api_key == "rzp_test_tenantkey1"
            assert credentials.api_secret == "tenant_secret_value"
            assert credentials.webhook_secret is None
            assert credentials.environment == GatewayEnvironment.SANDBOX

    async def test_record_and_credentials_repr_hide_secrets(self, session_factory) -> None:
        await add_config(
            session_factory, "org_1", "razorpay", is_default=True,
            api_key="rzp_test_tenantkey1", api_secret="tenant_secret_value",
        )
        resolver = CredentialResolver(session_factory, settings=make_settings())
        config = await resolver.get_gateway_config("org_1")
        credentials = resolver.decrypt(config)

        assert "tenant_secret_value" not in repr(credentials)
        assert "rzp_test_tenantkey1" not in repr(credentials)
        assert config.api_secret_encrypted not in repr(config)
        assert isinstance(credentials, ResolvedCredentials)

    async def test_secret_from_another_key_fails_closed(
        self, session_factory, monkeypatch, caplog
    ) -> None:
        await add_config(
            session_factory, "org_1", "stripe", is_default=True,
            api_key="pk_test_tenantkey01", api_secret="sk_test_tenantsecret1",
        )
        monkeypatch.setattr(kms.settings, "KMS_ENCRYPTION_KEY", "a-completely-different-master-key")
        kms.reset_key_manager()
        resolver = CredentialResolver(session_factory, settings=make_settings())
        config = await resolver.get_gateway_config("org_1")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(CredentialDecryptionError) as exc_info:
                resolver.decrypt(config)

        assert exc_info.value.field_name == "api_key"
        assert exc_info.value.provider == "stripe"
        assert "sk_test_tenantsecret1" not in str(exc_info.value)
        assert config.api_key_encrypted not in str(exc_info.value)
        assert config.api_key_encrypted not in caplog.text
        assert "Failed to decrypt api_key" in caplog.text
