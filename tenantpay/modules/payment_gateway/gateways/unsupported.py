"""Builders for providers that are recognized but have no adapter."""

from tenantpay.modules.payment_gateway.credentials import ResolvedCredentials
from tenantpay.modules.payment_gateway.exceptions import UnsupportedGatewayError
from tenantpay.modules.payment_gateway.interface import PaymentGatewayInterface


def not_implemented(provider: str, hint: str):
    """Build a registry entry that fails at construction with an actionable message.

    Args:
        provider: Provider key
        hint: What the operator should do instead
    """

    def builder(credentials: ResolvedCredentials) -> PaymentGatewayInterface:
        raise UnsupportedGatewayError(
            provider,
            f"Payment gateway '{provider}' is not yet implemented. {hint}",
        )

    return builder
