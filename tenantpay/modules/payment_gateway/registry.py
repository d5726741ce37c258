"""Provider registry.

Maps a provider key to the callable that builds its adapter. Adding a
provider means registering one factory here; nothing else branches on the
provider name.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from tenantpay.modules.payment_gateway.credentials import ResolvedCredentials
from tenantpay.modules.payment_gateway.exceptions import UnsupportedGatewayError
from tenantpay.modules.payment_gateway.interface import PaymentGatewayInterface
from tenantpay.modules.payment_gateway.models import GatewayProvider
from tenantpay.modules.payment_gateway.schemas import SupportedGateway

logger = logging.getLogger(__name__)

GatewayBuilder = Callable[[ResolvedCredentials], PaymentGatewayInterface]


@dataclass(frozen=True)
class GatewayRegistration:
    """One registered provider."""
    provider: str
    name: str
    description: str
    builder: GatewayBuilder
    implemented: bool = True


class GatewayRegistry:
    """Provider key to adapter builder mapping."""

    def __init__(self):
        self._registrations: dict[str, GatewayRegistration] = {}

    def register(
        self,
        provider: str,
        builder: GatewayBuilder,
        name: Optional[str] = None,
        description: str = "",
        implemented: bool = True,
    ) -> None:
        """Register (or replace) the builder for a provider.

        Args:
            provider: Provider key, matched case-insensitively
            builder: Callable taking ResolvedCredentials and returning an adapter
            name: Display name
            description: One-line description for presentation
            implemented: False for recognized providers without an adapter
        """
        key = provider.lower()
        if key in self._registrations:
            logger.info(f"Replacing payment gateway registration for {key}")
        self._registrations[key] = GatewayRegistration(
            provider=key,
            name=name or provider.title(),
            description=description,
            builder=builder,
            implemented=implemented,
        )

    def unregister(self, provider: str) -> None:
        self._registrations.pop(provider.lower(), None)

    def is_registered(self, provider: str) -> bool:
        return provider.lower() in self._registrations

    def get(self, provider: str) -> GatewayRegistration:
        """Get the registration for a provider.

        Raises:
            UnsupportedGatewayError: The key is not a known provider
        """
        registration = self._registrations.get(provider.lower())
        if registration is None:
            raise UnsupportedGatewayError(provider, recognized=False)
        return registration

    def create(self, credentials: ResolvedCredentials) -> PaymentGatewayInterface:
        """Build an adapter for the provider named in the credentials."""
        return self.get(credentials.provider).builder(credentials)

    def supported_gateways(self) -> list[SupportedGateway]:
        return [
            SupportedGateway(
                id=registration.provider,
                name=registration.name,
                description=registration.description,
                implemented=registration.implemented,
            )
            for registration in self._registrations.values()
        ]


def build_default_registry() -> GatewayRegistry:
    """Create a registry holding every provider shipped with tenantpay."""
    from tenantpay.modules.payment_gateway.gateways import (
        CashfreeGateway,
        RazorpayGateway,
        StripeGateway,
        not_implemented,
    )

    registry = GatewayRegistry()
    registry.register(
        GatewayProvider.RAZORPAY.value,
        RazorpayGateway,
        name="Razorpay",
        description="Accept payments in India via UPI, cards, net banking and wallets",
    )
    registry.register(
        GatewayProvider.STRIPE.value,
        StripeGateway,
        name="Stripe",
        description="Accept international card payments",
    )
    registry.register(
        GatewayProvider.CASHFREE.value,
        CashfreeGateway,
        name="Cashfree",
        description="Indian payment gateway with UPI, cards and payment links",
    )
    registry.register(
        GatewayProvider.PAYU.value,
        not_implemented(
            GatewayProvider.PAYU.value,
            "PayU support requires a PayU adapter; configure Razorpay, Stripe or Cashfree instead",
        ),
        name="PayU",
        description="Popular payment gateway in India and emerging markets",
        implemented=False,
    )
    registry.register(
        GatewayProvider.PAYONEER.value,
        not_implemented(
            GatewayProvider.PAYONEER.value,
            "Payoneer support requires a Payoneer adapter; configure Stripe for international payments instead",
        ),
        name="Payoneer",
        description="Cross-border payments for freelancers and businesses",
        implemented=False,
    )
    return registry
