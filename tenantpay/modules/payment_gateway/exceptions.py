"""Payment gateway error taxonomy.

Configuration and capability errors need a human to act and are surfaced
unchanged. Provider failures keep the provider's reason for diagnostics.
None of these messages are ever built from decrypted credentials.
"""

from typing import Optional


class PaymentGatewayError(Exception):
    """Base exception for the payment gateway layer."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class GatewayNotConfiguredError(PaymentGatewayError):
    """No tenant configuration and no environment fallback exists."""

    def __init__(self, provider: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            if provider:
                message = f"Payment gateway '{provider}' is not configured for this organization"
            else:
                message = "No default payment gateway is configured for this organization"
        super().__init__(message, provider)


class WebhookSecretNotConfiguredError(GatewayNotConfiguredError):
    """Webhook verification was requested but no webhook secret is stored."""

    def __init__(self, provider: str):
        super().__init__(
            provider,
            f"Webhook secret is not configured for {provider}; "
            f"add it to the gateway configuration before accepting webhooks",
        )


class CredentialDecryptionError(GatewayNotConfiguredError):
    """A stored credential could not be decrypted with any active key."""

    def __init__(self, provider: str, field_name: str):
        super().__init__(
            provider,
            f"Stored {field_name} for {provider} could not be decrypted; "
            f"re-enter the gateway credentials",
        )
        self.field_name = field_name


class GatewayRequestError(PaymentGatewayError):
    """The provider (or a local contract check) rejected the request."""

    def __init__(
        self,
        provider: Optional[str],
        message: str,
        code: Optional[str] = None,
    ):
        super().__init__(message, provider)
        self.code = code


class GatewayNotFoundError(PaymentGatewayError):
    """The provider has no record of the order or payment."""

    def __init__(self, provider: Optional[str], resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{provider or 'Gateway'} has no record of '{resource_id}'",
            provider,
        )
        self.resource_id = resource_id


class UnsupportedGatewayError(PaymentGatewayError):
    """The provider key has no adapter in this deployment."""

    def __init__(self, provider: str, message: Optional[str] = None, recognized: bool = True):
        if message is None:
            if recognized:
                message = f"Payment gateway '{provider}' is not yet implemented"
            else:
                message = f"Unsupported payment gateway: {provider}"
        super().__init__(message, provider)
        self.recognized = recognized
