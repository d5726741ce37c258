"""Payment gateway factory and service.

The factory maps (organization, configuration row) to a live adapter and
caches it; the service is the organization-keyed facade business workflows
and webhook receivers call.

Writers of gateway configuration must call one of the factory's
invalidation methods after persisting a change and before responding.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantpay.core.config import Settings
from tenantpay.modules.payment_gateway.credentials import CredentialResolver, GatewayConfigRecord
from tenantpay.modules.payment_gateway.currency import Amount
from tenantpay.modules.payment_gateway.interface import (
    CheckoutAsset,
    CustomerDetails,
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentStatusRecord,
    RefundRecord,
)
from tenantpay.modules.payment_gateway.registry import GatewayRegistry, build_default_registry
from tenantpay.modules.payment_gateway.schemas import GatewayConfigSummary, SupportedGateway
from tenantpay.modules.payment_gateway.webhook import WebhookVerificationResult

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]


@dataclass
class _CacheEntry:
    gateway: PaymentGatewayInterface
    version: str


class PaymentGatewayFactory:
    """Builds and caches gateway adapters per organization configuration.

    Cache keys are (organization id, configuration id). Entries remember the
    row version they were built from, so an updated row is rebuilt even
    without explicit invalidation. Concurrent misses for one key may build
    the adapter more than once; the first published entry wins.

    A lookup snapshots the organization's generation before resolving. If an
    invalidation bumps it while the adapter is being built, the result is not
    published and the lookup resolves again.
    """

    MAX_RESOLVE_ATTEMPTS = 3

    def __init__(self, resolver: CredentialResolver, registry: Optional[GatewayRegistry] = None):
        self.resolver = resolver
        self.registry = registry or build_default_registry()
        self._cache: dict[CacheKey, _CacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        # Guards the dicts above only; never held across I/O or construction
        self._lock = threading.Lock()

    @staticmethod
    def get_supported_gateways() -> list[SupportedGateway]:
        """List every provider shipped with tenantpay, for presentation."""
        return build_default_registry().supported_gateways()

    @property
    def cached_count(self) -> int:
        with self._lock:
            return len(self._cache)

    async def get_gateway_config(
        self,
        organization_id: str,
        provider: Optional[str] = None,
    ) -> GatewayConfigRecord:
        """Resolve the (still encrypted) configuration for an organization."""
        return await self.resolver.get_gateway_config(organization_id, provider)

    async def get_gateway(
        self,
        organization_id: str,
        provider: Optional[str] = None,
    ) -> PaymentGatewayInterface:
        """Get a gateway adapter for an organization.

        Args:
            organization_id: Tenant organization id
            provider: Provider key, or None for the organization's default

        Returns:
            Adapter bound to the organization's current credentials

        Raises:
            GatewayNotConfiguredError: No tenant or environment configuration
            UnsupportedGatewayError: The provider has no adapter
        """
        return await self._resolve(
            organization_id,
            lambda: self.resolver.get_gateway_config(organization_id, provider),
        )

    async def get_gateway_for_config(
        self,
        organization_id: str,
        config_id: str,
    ) -> PaymentGatewayInterface:
        """Get the adapter for one specific configuration row."""
        return await self._resolve(
            organization_id,
            lambda: self.resolver.get_config_by_id(organization_id, config_id),
        )

    async def _resolve(self, organization_id: str, lookup) -> PaymentGatewayInterface:
        gateway = None
        for _ in range(self.MAX_RESOLVE_ATTEMPTS):
            token = self._token(organization_id)
            config = await lookup()
            gateway, published = self._get_or_build(config, token)
            if published:
                return gateway
            logger.debug(
                f"Gateway lookup for organization {organization_id} raced an "
                f"invalidation, resolving again"
            )

        logger.warning(
            f"Gateway cache for organization {organization_id} kept changing during "
            f"lookup; returning an uncached adapter"
        )
        return gateway

    def _token(self, organization_id: str) -> tuple[int, int]:
        with self._lock:
            return self._epoch, self._generations.get(organization_id, 0)

    def _get_or_build(
        self,
        config: GatewayConfigRecord,
        token: tuple[int, int],
    ) -> tuple[PaymentGatewayInterface, bool]:
        key = (config.organization_id, config.id)
        with self._lock:
            entry = self._cache.get(key)
        if entry is not None and entry.version == config.version:
            logger.debug(f"Gateway cache hit for {key}")
            return entry.gateway, True

        logger.debug(f"Gateway cache miss for {key}, building {config.provider} adapter")
        with self.resolver.decrypted(config) as credentials:
            gateway = self.registry.create(credentials)

        with self._lock:
            current = (self._epoch, self._generations.get(config.organization_id, 0))
            if current != token:
                return gateway, False
            existing = self._cache.get(key)
            # ISO timestamps order lexically; never replace a newer build
            if existing is not None and existing.version >= config.version:
                return existing.gateway, True
            self._cache[key] = _CacheEntry(gateway=gateway, version=config.version)

        if entry is not None:
            logger.info(
                f"Rebuilt {config.provider} gateway for organization "
                f"{config.organization_id} after configuration {config.id} changed"
            )
        return gateway, True

    def invalidate(self, organization_id: str, config_id: str) -> bool:
        """Drop the cached adapter for one configuration row.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            self._bump(organization_id)
            removed = self._cache.pop((organization_id, str(config_id)), None)
        logger.info(
            f"Invalidated gateway cache for organization {organization_id}, "
            f"configuration {config_id}"
        )
        return removed is not None

    def clear_cache_for_organization(self, organization_id: str) -> int:
        """Drop every cached adapter of an organization.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._bump(organization_id)
            keys = [key for key in self._cache if key[0] == organization_id]
            for key in keys:
                del self._cache[key]
        logger.info(f"Cleared {len(keys)} cached gateways for organization {organization_id}")
        return len(keys)

    def clear(self) -> None:
        """Drop every cached adapter."""
        with self._lock:
            self._epoch += 1
            self._cache.clear()
        logger.info("Cleared payment gateway cache")

    async def shutdown(self) -> None:
        """Clear the cache and close every adapter it held."""
        with self._lock:
            self._epoch += 1
            gateways = [entry.gateway for entry in self._cache.values()]
            self._cache.clear()
        for gateway in gateways:
            await gateway.aclose()
        logger.info(f"Payment gateway factory shut down, closed {len(gateways)} adapters")

    def _bump(self, organization_id: str) -> None:
        self._generations[organization_id] = self._generations.get(organization_id, 0) + 1


class PaymentGatewayService:
    """Organization-keyed entry point for payment operations."""

    def __init__(self, factory: PaymentGatewayFactory):
        self.factory = factory

    async def resolve_gateway(
        self,
        organization_id: str,
        provider: Optional[str] = None,
    ) -> PaymentGatewayInterface:
        return await self.factory.get_gateway(organization_id, provider)

    async def create_order(
        self,
        organization_id: str,
        amount: Amount,
        currency: str,
        order_id: str,
        customer: CustomerDetails,
        provider: Optional[str] = None,
        metadata: Optional[dict] = None,
        return_url: Optional[str] = None,
        notify_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentOrder:
        """Create an order through the organization's gateway.

        Args:
            organization_id: Tenant organization id
            amount: Amount in major units
            currency: ISO 4217 code
            order_id: Merchant order id
            customer: Customer details
            provider: Provider key, or None for the organization's default

        Returns:
            PaymentOrder
        """
        gateway = await self.resolve_gateway(organization_id, provider)
        return await gateway.create_order(
            amount=amount,
            currency=currency,
            order_id=order_id,
            customer=customer,
            metadata=metadata,
            return_url=return_url,
            notify_url=notify_url,
            description=description,
        )

    async def get_payment_status(
        self,
        organization_id: str,
        order_id: str,
        provider: Optional[str] = None,
    ) -> PaymentStatusRecord:
        gateway = await self.resolve_gateway(organization_id, provider)
        return await gateway.get_payment_status(order_id)

    async def refund_payment(
        self,
        organization_id: str,
        payment_id: str,
        amount: Optional[Amount] = None,
        reason: Optional[str] = None,
        notes: Optional[dict] = None,
        provider: Optional[str] = None,
    ) -> RefundRecord:
        gateway = await self.resolve_gateway(organization_id, provider)
        return await gateway.refund_payment(payment_id, amount=amount, reason=reason, notes=notes)

    async def verify_webhook(
        self,
        organization_id: str,
        provider: str,
        signature: str,
        payload: Union[bytes, str],
        timestamp: Optional[str] = None,
        config_id: Optional[str] = None,
    ) -> WebhookVerificationResult:
        """Verify an inbound webhook for an organization's gateway.

        Args:
            organization_id: Tenant organization id
            provider: Provider the webhook claims to come from
            signature: Signature header value
            payload: Raw request body
            timestamp: Timestamp header value, if any
            config_id: Specific configuration the webhook URL is bound to

        Returns:
            WebhookVerificationResult; invalid results carry no payload
        """
        if config_id:
            gateway = await self.factory.get_gateway_for_config(organization_id, config_id)
            if gateway.provider != provider.lower():
                logger.warning(
                    f"Webhook for configuration {config_id} claims provider {provider} "
                    f"but the configuration is {gateway.provider}"
                )
                return WebhookVerificationResult.invalid("provider mismatch")
        else:
            gateway = await self.resolve_gateway(organization_id, provider)
        return gateway.verify_webhook_signature(signature, payload, timestamp)

    async def get_checkout_asset(
        self,
        organization_id: str,
        provider: Optional[str] = None,
    ) -> CheckoutAsset:
        gateway = await self.resolve_gateway(organization_id, provider)
        return gateway.get_checkout_asset()

    async def list_configured_gateways(self, organization_id: str) -> list[GatewayConfigSummary]:
        """List the gateways an organization can use, default first.

        Falls back to the environment default when the organization has no
        configuration of its own.
        """
        configs = await self.factory.resolver.list_gateway_configs(organization_id)
        if not configs:
            fallback = self.factory.resolver.get_environment_config(organization_id)
            configs = [fallback] if fallback is not None else []

        summaries = []
        for config in configs:
            if self.factory.registry.is_registered(config.provider):
                registration = self.factory.registry.get(config.provider)
                name, implemented = registration.name, registration.implemented
            else:
                name, implemented = config.provider.title(), False
            summaries.append(
                GatewayConfigSummary(
                    config_id=config.id,
                    provider=config.provider,
                    name=name,
                    nickname=config.nickname,
                    environment=config.environment.value,
                    is_default=config.is_default,
                    source=config.source.value,
                    implemented=implemented,
                    updated_at=config.updated_at,
                )
            )
        return summaries


def create_payment_gateway_factory(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    settings: Optional[Settings] = None,
    registry: Optional[GatewayRegistry] = None,
) -> PaymentGatewayFactory:
    """Build a factory wired to the application database.

    Each call returns an independent factory with an empty cache.
    """
    if session_factory is None:
        from tenantpay.core.database import async_session_maker

        session_factory = async_session_maker
    resolver = CredentialResolver(session_factory, settings=settings)
    return PaymentGatewayFactory(resolver, registry=registry)
