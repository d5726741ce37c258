"""Payment Gateway Module.

Multi-tenant payment gateway layer: per-organization provider configuration,
a uniform adapter contract for Razorpay, Stripe and Cashfree, canonical
status normalization and webhook signature verification.
"""

from tenantpay.modules.payment_gateway.exceptions import (
    PaymentGatewayError,
    GatewayNotConfiguredError,
    WebhookSecretNotConfiguredError,
    CredentialDecryptionError,
    GatewayRequestError,
    GatewayNotFoundError,
    UnsupportedGatewayError,
)
from tenantpay.modules.payment_gateway.status import (
    PaymentStatus,
    RefundStatus,
    StatusNormalizer,
)
from tenantpay.modules.payment_gateway.models import (
    PaymentGatewayConfig,
    GatewayProvider,
    GatewayEnvironment,
)
from tenantpay.modules.payment_gateway.credentials import (
    ConfigSource,
    CredentialResolver,
    GatewayConfigRecord,
    ResolvedCredentials,
    encrypt_credential,
    decrypt_credential,
)
from tenantpay.modules.payment_gateway.interface import (
    PaymentGatewayInterface,
    CustomerDetails,
    PaymentOrder,
    PaymentStatusRecord,
    RefundRecord,
    CheckoutAsset,
)
from tenantpay.modules.payment_gateway.webhook import (
    WebhookVerificationResult,
    WebhookVerifier,
)
from tenantpay.modules.payment_gateway.registry import (
    GatewayRegistry,
    build_default_registry,
)
from tenantpay.modules.payment_gateway.service import (
    PaymentGatewayFactory,
    PaymentGatewayService,
    create_payment_gateway_factory,
)
from tenantpay.modules.payment_gateway.gateways import (
    RazorpayGateway,
    StripeGateway,
    StripeWebhookVerifier,
    CashfreeGateway,
)

__all__ = [
    # Errors
    "PaymentGatewayError",
    "GatewayNotConfiguredError",
    "WebhookSecretNotConfiguredError",
    "CredentialDecryptionError",
    "GatewayRequestError",
    "GatewayNotFoundError",
    "UnsupportedGatewayError",
    # Status
    "PaymentStatus",
    "RefundStatus",
    "StatusNormalizer",
    # Models
    "PaymentGatewayConfig",
    "GatewayProvider",
    "GatewayEnvironment",
    # Credentials
    "ConfigSource",
    "CredentialResolver",
    "GatewayConfigRecord",
    "ResolvedCredentials",
    "encrypt_credential",
    "decrypt_credential",
    # Interface
    "PaymentGatewayInterface",
    "CustomerDetails",
    "PaymentOrder",
    "PaymentStatusRecord",
    "RefundRecord",
    "CheckoutAsset",
    # Webhooks
    "WebhookVerificationResult",
    "WebhookVerifier",
    "StripeWebhookVerifier",
    # Services
    "GatewayRegistry",
    "build_default_registry",
    "PaymentGatewayFactory",
    "PaymentGatewayService",
    "create_payment_gateway_factory",
    # Gateways
    "RazorpayGateway",
    "StripeGateway",
    "CashfreeGateway",
]
