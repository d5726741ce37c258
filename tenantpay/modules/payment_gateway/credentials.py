"""Credential resolution for payment gateways.

Resolves an organization (and optionally a provider) to a configuration
record, falling back to process-wide environment credentials, and
decrypts secrets only for the duration of one adapter construction.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantpay.core.config import Settings, settings as default_settings
from tenantpay.core.kms import decrypt_secret, encrypt_secret
from tenantpay.modules.payment_gateway.exceptions import (
    CredentialDecryptionError,
    GatewayNotConfiguredError,
)
from tenantpay.modules.payment_gateway.models import (
    GatewayEnvironment,
    GatewayProvider,
    PaymentGatewayConfig,
)
from tenantpay.modules.payment_gateway.repository import PaymentGatewayConfigRepository

logger = logging.getLogger(__name__)

ENVIRONMENT_CONFIG_PREFIX = "env:"


class ConfigSource(str, Enum):
    """Where a gateway configuration came from."""
    TENANT = "tenant"
    ENVIRONMENT = "environment"


@dataclass(frozen=True)
class GatewayConfigRecord:
    """Detached, still-encrypted view of a gateway configuration.

    Environment fallback records carry no secrets at all; their values are
    read from settings at decryption time.
    """
    id: str
    organization_id: str
    provider: str
    environment: GatewayEnvironment
    is_default: bool = False
    is_active: bool = True
    source: ConfigSource = ConfigSource.TENANT
    nickname: Optional[str] = None
    updated_at: Optional[datetime] = None
    api_key_encrypted: Optional[str] = field(default=None, repr=False)
    api_secret_encrypted: Optional[str] = field(default=None, repr=False)
    webhook_secret_encrypted: Optional[str] = field(default=None, repr=False)
    public_key_encrypted: Optional[str] = field(default=None, repr=False)

    @property
    def version(self) -> str:
        """Changes whenever the underlying row is updated."""
        return self.updated_at.isoformat() if self.updated_at else ""

    @classmethod
    def from_model(cls, config: PaymentGatewayConfig) -> "GatewayConfigRecord":
        return cls(
            id=str(config.id),
            organization_id=config.organization_id,
            provider=config.provider.lower(),
            environment=GatewayEnvironment(config.environment),
            is_default=config.is_default,
            is_active=config.is_active,
            source=ConfigSource.TENANT,
            nickname=config.nickname,
            updated_at=config.updated_at,
            api_key_encrypted=config.api_key_encrypted,
            api_secret_encrypted=config.api_secret_encrypted,
            webhook_secret_encrypted=config.webhook_secret_encrypted,
            public_key_encrypted=config.public_key_encrypted,
        )


@dataclass(frozen=True)
class ResolvedCredentials:
    """Decrypted configuration; lives only while an adapter is built.

    Secret fields are excluded from repr so the object is safe to pass
    near a logger, but it is never stored or logged on purpose.
    """
    config_id: str
    organization_id: str
    provider: str
    environment: GatewayEnvironment
    api_key: str = field(repr=False)
    api_secret: str = field(repr=False)
    webhook_secret: Optional[str] = field(default=None, repr=False)
    public_key: Optional[str] = field(default=None, repr=False)


def encrypt_credential(plaintext: str) -> str:
    """Encrypt a credential using KMS.

    Args:
        plaintext: Plain text credential

    Returns:
        Encrypted credential string
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty credential")
    return encrypt_secret(plaintext)


def decrypt_credential(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a credential using KMS.

    Args:
        ciphertext: Encrypted credential string

    Returns:
        Decrypted credential or None if decryption fails
    """
    if not ciphertext:
        return None
    return decrypt_secret(ciphertext)


class CredentialResolver:
    """Reads gateway configuration for an organization.

    Lookup order: the organization's row for the requested provider (or its
    active default row), then environment fallback credentials. With no
    provider requested the fallback tries Razorpay before Stripe.
    """

    FALLBACK_ORDER = (GatewayProvider.RAZORPAY.value, GatewayProvider.STRIPE.value)

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or default_settings

    async def get_gateway_config(
        self,
        organization_id: str,
        provider: Optional[str] = None,
    ) -> GatewayConfigRecord:
        """Resolve the configuration a gateway should be built from.

        Args:
            organization_id: Tenant organization id
            provider: Provider key, or None for the organization's default

        Returns:
            GatewayConfigRecord (still encrypted)

        Raises:
            GatewayNotConfiguredError: Neither tenant nor environment config exists
        """
        provider = provider.lower() if provider else None

        async with self._session_factory() as session:
            repo = PaymentGatewayConfigRepository(session)
            if provider:
                config = await repo.get_active_config(organization_id, provider)
            else:
                config = await repo.get_default_config(organization_id)

        if config is not None:
            return GatewayConfigRecord.from_model(config)

        fallback = self.get_environment_config(organization_id, provider)
        if fallback is not None:
            logger.info(
                f"Organization {organization_id} has no "
                f"{provider or 'default'} gateway configuration, "
                f"using environment credentials for {fallback.provider}"
            )
            return fallback

        raise GatewayNotConfiguredError(provider)

    async def get_config_by_id(self, organization_id: str, config_id: str) -> GatewayConfigRecord:
        """Resolve one specific configuration row of an organization.

        Raises:
            GatewayNotConfiguredError: The row does not exist, belongs to another
                organization, or is inactive
        """
        if config_id.startswith(ENVIRONMENT_CONFIG_PREFIX):
            provider = config_id[len(ENVIRONMENT_CONFIG_PREFIX):]
            fallback = self.get_environment_config(organization_id, provider)
            if fallback is None:
                raise GatewayNotConfiguredError(provider)
            return fallback

        try:
            row_id = uuid.UUID(config_id)
        except ValueError:
            raise GatewayNotConfiguredError(
                message=f"Payment gateway configuration '{config_id}' not found"
            )

        async with self._session_factory() as session:
            config = await PaymentGatewayConfigRepository(session).get_config_by_id(row_id)

        if config is None or config.organization_id != organization_id or not config.is_active:
            raise GatewayNotConfiguredError(
                message=f"Payment gateway configuration '{config_id}' not found"
            )
        return GatewayConfigRecord.from_model(config)

    async def list_gateway_configs(self, organization_id: str) -> list[GatewayConfigRecord]:
        """List the organization's active configurations, default first."""
        async with self._session_factory() as session:
            configs = await PaymentGatewayConfigRepository(session).list_active_configs(organization_id)
        return [GatewayConfigRecord.from_model(config) for config in configs]

    def get_environment_config(
        self,
        organization_id: str,
        provider: Optional[str] = None,
    ) -> Optional[GatewayConfigRecord]:
        """Build a fallback record from environment credentials, if present."""
        candidates = (provider,) if provider else self.FALLBACK_ORDER
        for candidate in candidates:
            if self._has_environment_credentials(candidate):
                return GatewayConfigRecord(
                    id=f"{ENVIRONMENT_CONFIG_PREFIX}{candidate}",
                    organization_id=organization_id,
                    provider=candidate,
                    environment=GatewayEnvironment.PRODUCTION,
                    is_default=provider is None,
                    source=ConfigSource.ENVIRONMENT,
                )
        return None

    def _has_environment_credentials(self, provider: str) -> bool:
        if provider == GatewayProvider.RAZORPAY.value:
            return self._settings.has_razorpay_fallback
        if provider == GatewayProvider.STRIPE.value:
            return self._settings.has_stripe_fallback
        return False

    def decrypt(self, config: GatewayConfigRecord) -> ResolvedCredentials:
        """Decrypt a configuration record.

        Prefer ``decrypted()``, which scopes the result to one block.

        Raises:
            CredentialDecryptionError: A stored secret cannot be decrypted
        """
        if config.source == ConfigSource.ENVIRONMENT:
            return self._environment_credentials(config)

        return ResolvedCredentials(
            config_id=config.id,
            organization_id=config.organization_id,
            provider=config.provider,
            environment=config.environment,
            api_key=self._decrypt_field(config, "api_key", config.api_key_encrypted) or "",
            api_secret=self._decrypt_field(config, "api_secret", config.api_secret_encrypted) or "",
            webhook_secret=self._decrypt_field(config, "webhook_secret", config.webhook_secret_encrypted),
            public_key=self._decrypt_field(config, "public_key", config.public_key_encrypted),
        )

    @contextmanager
    def decrypted(self, config: GatewayConfigRecord) -> Iterator[ResolvedCredentials]:
        """Decrypt a record for the duration of a ``with`` block."""
        credentials = self.decrypt(config)
        try:
            yield credentials
        finally:
            del credentials

    def _decrypt_field(
        self,
        config: GatewayConfigRecord,
        field_name: str,
        ciphertext: Optional[str],
    ) -> Optional[str]:
        if not ciphertext:
            return None
        plaintext = decrypt_credential(ciphertext)
        if plaintext is None:
            logger.error(
                f"Failed to decrypt {field_name} of gateway configuration {config.id} "
                f"({config.provider}) for organization {config.organization_id}"
            )
            raise CredentialDecryptionError(config.provider, field_name)
        return plaintext

    def _environment_credentials(self, config: GatewayConfigRecord) -> ResolvedCredentials:
        s = self._settings
        if config.provider == GatewayProvider.RAZORPAY.value:
            api_key, api_secret = s.RAZORPAY_KEY_ID, s.RAZORPAY_KEY_SECRET
            webhook_secret, public_key = s.RAZORPAY_WEBHOOK_SECRET, s.RAZORPAY_KEY_ID
        elif config.provider == GatewayProvider.STRIPE.value:
            api_key, api_secret = s.STRIPE_PUBLIC_KEY, s.STRIPE_SECRET_KEY
            webhook_secret, public_key = s.STRIPE_WEBHOOK_SECRET, s.STRIPE_PUBLIC_KEY
        else:
            raise GatewayNotConfiguredError(config.provider)

        return ResolvedCredentials(
            config_id=config.id,
            organization_id=config.organization_id,
            provider=config.provider,
            environment=config.environment,
            api_key=api_key,
            api_secret=api_secret,
            webhook_secret=webhook_secret or None,
            public_key=public_key or None,
        )
