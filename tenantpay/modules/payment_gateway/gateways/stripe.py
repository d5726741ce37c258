"""Stripe payment gateway implementation.

Orders are PaymentIntents; the intent's client secret is returned as the
session id for Stripe.js. Each adapter owns a StripeClient so that tenants
never share the module-global API key.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from tenantpay.modules.payment_gateway.credentials import ResolvedCredentials
from tenantpay.modules.payment_gateway.currency import from_minor_units, to_minor_units
from tenantpay.modules.payment_gateway.exceptions import (
    GatewayNotFoundError,
    GatewayRequestError,
    PaymentGatewayError,
)
from tenantpay.modules.payment_gateway.interface import (
    CheckoutAsset,
    CreateOrderRequest,
    PaymentGatewayInterface,
    PaymentOrder,
    PaymentStatusRecord,
    RefundablePayment,
    RefundRecord,
    RefundRequest,
)
from tenantpay.modules.payment_gateway.models import GatewayProvider
from tenantpay.modules.payment_gateway.status import (
    PaymentStatus,
    RefundStatus,
    StatusNormalizer,
)
from tenantpay.modules.payment_gateway.webhook import (
    Payload,
    WebhookVerificationResult,
    WebhookVerifier,
)

logger = logging.getLogger(__name__)

# Reasons the Refunds API accepts; anything else goes to metadata
REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})


def _stripe_event(document: dict) -> tuple[Optional[str], Any]:
    return document.get("type"), (document.get("data") or {}).get("object")


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    value = getattr(obj, name, None)
    return default if value is None else value


def _signature_failure(error: stripe.SignatureVerificationError) -> str:
    message = str(error)
    if "tolerance" in message:
        return "timestamp outside tolerance"
    if "Unable to extract" in message or "expected scheme" in message:
        return "malformed signature header"
    return "signature mismatch"


class StripeWebhookVerifier(WebhookVerifier):
    """Verifier for Stripe's ``Stripe-Signature`` header.

    Header parsing, the ``v1`` comparison and the replay window are done by
    ``stripe.WebhookSignature``; the body is decoded only after it accepts
    the header. ``sign`` builds the header Stripe would send, for tests and
    local tooling.
    """

    def __init__(self, secret: str, *, tolerance_seconds: int = 300, **kwargs):
        super().__init__(
            secret,
            encoding="hex",
            include_timestamp=True,
            timestamp_separator=".",
            tolerance_seconds=tolerance_seconds,
            extract_event=_stripe_event,
            **kwargs,
        )
        self._endpoint_secret = secret

    def sign(self, payload: Payload, timestamp: Optional[str] = None) -> str:
        timestamp = timestamp or str(int(time.time()))
        return f"t={timestamp},v1={self.compute_signature(payload, timestamp)}"

    def verify(
        self,
        signature: Optional[str],
        payload: Payload,
        timestamp: Optional[str] = None,
    ) -> WebhookVerificationResult:
        """Verify a ``Stripe-Signature`` header; ``timestamp`` is unused."""
        if not signature:
            return WebhookVerificationResult.invalid("missing signature")
        try:
            body = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
            text = body.decode("utf-8")
        except (TypeError, UnicodeDecodeError):
            return WebhookVerificationResult.invalid("unreadable payload")

        try:
            stripe.WebhookSignature.verify_header(
                text,
                signature,
                self._endpoint_secret,
                tolerance=self.tolerance_seconds or None,
            )
        except stripe.SignatureVerificationError as e:
            return WebhookVerificationResult.invalid(_signature_failure(e))
        return self._decode(body)


class StripeGateway(PaymentGatewayInterface):
    """Stripe payment gateway implementation.

    Supports:
    - Card payments through PaymentIntents and Stripe.js
    - Full and partial refunds
    - Signed webhooks with replay protection
    """

    provider = GatewayProvider.STRIPE.value
    display_name = "Stripe"

    CHECKOUT_SCRIPT = "https://js.stripe.com/v3/"

    STATUS_NORMALIZER = StatusNormalizer(
        {
            "requires_payment_method": PaymentStatus.PENDING,
            "requires_confirmation": PaymentStatus.PENDING,
            "requires_action": PaymentStatus.PENDING,
            "processing": PaymentStatus.PROCESSING,
            "requires_capture": PaymentStatus.PROCESSING,
            "succeeded": PaymentStatus.PAID,
            "canceled": PaymentStatus.CANCELLED,
        },
        PaymentStatus.PENDING,
    )

    REFUND_STATUS_NORMALIZER = StatusNormalizer(
        {
            "pending": RefundStatus.PENDING,
            "requires_action": RefundStatus.PENDING,
            "succeeded": RefundStatus.PROCESSED,
            "failed": RefundStatus.FAILED,
            "canceled": RefundStatus.FAILED,
        },
        RefundStatus.PENDING,
    )

    def __init__(
        self,
        credentials: ResolvedCredentials,
        webhook_tolerance_seconds: Optional[int] = None,
        client: Optional[stripe.StripeClient] = None,
    ):
        super().__init__(credentials, webhook_tolerance_seconds)
        if not credentials.api_secret:
            raise GatewayRequestError(
                self.provider,
                "Stripe requires a secret key",
                code="credentials_missing",
            )
        self.publishable_key = credentials.public_key or credentials.api_key or None
        self._client = client or stripe.StripeClient(credentials.api_secret)

    async def _create_order(self, request: CreateOrderRequest) -> PaymentOrder:
        params: dict = {
            "amount": to_minor_units(request.amount, request.currency),
            "currency": request.currency.lower(),
            "metadata": {
                "order_id": request.order_id,
                **{key: str(value) for key, value in request.metadata.items()},
            },
        }
        if request.description:
            params["description"] = request.description
        if request.customer.email:
            params["receipt_email"] = request.customer.email

        intent = await self._run_sync(
            "create_order", self._client.payment_intents.create, params=params
        )
        currency = str(_field(intent, "currency", request.currency)).upper()

        return PaymentOrder(
            order_id=request.order_id,
            gateway_order_id=intent.id,
            session_id=_field(intent, "client_secret"),
            amount=from_minor_units(_field(intent, "amount"), currency),
            currency=currency,
            status=self._normalize_status(_field(intent, "status")),
            metadata={
                "stripe_payment_intent_id": intent.id,
                "publishable_key": self.publishable_key,
            },
        )

    async def _get_payment_status(self, order_id: str) -> PaymentStatusRecord:
        intent = await self._retrieve_intent("get_payment_status", order_id)
        currency = str(_field(intent, "currency", "usd")).upper()
        status = self._normalize_status(_field(intent, "status"))
        charge = self._latest_charge(intent)
        metadata = _field(intent, "metadata", {}) or {}
        last_error = _field(intent, "last_payment_error")
        payment_types = _field(intent, "payment_method_types", []) or []

        paid_at = None
        if status == PaymentStatus.PAID:
            paid_at = datetime.fromtimestamp(
                int(_field(charge, "created", _field(intent, "created", 0))), tz=timezone.utc
            )

        return PaymentStatusRecord(
            order_id=metadata.get("order_id") or order_id,
            gateway_order_id=intent.id,
            gateway_payment_id=intent.id,
            status=status,
            amount=from_minor_units(_field(intent, "amount"), currency),
            currency=currency,
            amount_refunded=(
                from_minor_units(_field(charge, "amount_refunded", 0), currency)
                if charge is not None else None
            ),
            paid_at=paid_at,
            payment_method=payment_types[0] if payment_types else None,
            failure_reason=_field(last_error, "message"),
            metadata={"stripe_payment_intent_id": intent.id},
        )

    async def _get_refundable_payment(self, payment_id: str) -> RefundablePayment:
        intent = await self._retrieve_intent("refund_payment", payment_id)
        currency = str(_field(intent, "currency", "usd")).upper()
        charge = self._latest_charge(intent)
        return RefundablePayment(
            payment_id=payment_id,
            status=self._normalize_status(_field(intent, "status")),
            amount=from_minor_units(
                _field(intent, "amount_received") or _field(intent, "amount"), currency
            ),
            amount_refunded=from_minor_units(_field(charge, "amount_refunded", 0), currency),
            currency=currency,
        )

    async def _refund_payment(self, request: RefundRequest) -> RefundRecord:
        currency = request.payment.currency
        params: dict = {"payment_intent": request.payment_id}
        if request.amount is not None:
            params["amount"] = to_minor_units(request.amount, currency)
        metadata = {key: str(value) for key, value in request.notes.items()}
        if request.reason in REFUND_REASONS:
            params["reason"] = request.reason
        elif request.reason:
            metadata.setdefault("reason", request.reason)
        if metadata:
            params["metadata"] = metadata

        refund = await self._run_sync(
            "refund_payment",
            self._client.refunds.create,
            params=params,
            resource_id=request.payment_id,
        )
        refund_currency = str(_field(refund, "currency", currency)).upper()
        created = _field(refund, "created")
        return RefundRecord(
            refund_id=refund.id,
            payment_id=request.payment_id,
            status=self._normalize_refund_status(_field(refund, "status")),
            amount=from_minor_units(_field(refund, "amount"), refund_currency),
            currency=refund_currency,
            processed_at=datetime.fromtimestamp(int(created), tz=timezone.utc) if created else None,
            metadata={"stripe_refund_id": refund.id},
        )

    async def _retrieve_intent(self, operation: str, intent_id: str):
        return await self._run_sync(
            operation,
            self._client.payment_intents.retrieve,
            intent_id,
            params={"expand": ["latest_charge"]},
            resource_id=intent_id,
        )

    @staticmethod
    def _latest_charge(intent: Any) -> Any:
        charge = _field(intent, "latest_charge")
        # Unexpanded charges are plain ids
        if isinstance(charge, str):
            return None
        return charge

    def _build_webhook_verifier(self, secret: str) -> WebhookVerifier:
        return StripeWebhookVerifier(secret, tolerance_seconds=self.webhook_tolerance_seconds)

    def get_checkout_asset(self) -> CheckoutAsset:
        return CheckoutAsset(src=self.CHECKOUT_SCRIPT)

    def _translate_error(
        self,
        operation: str,
        error: Exception,
        resource_id: Optional[str] = None,
    ) -> PaymentGatewayError:
        if isinstance(error, stripe.StripeError):
            message = getattr(error, "user_message", None) or str(error)
            code = getattr(error, "code", None)
            if (
                isinstance(error, stripe.InvalidRequestError)
                and code == "resource_missing"
                and resource_id
            ):
                return GatewayNotFoundError(self.provider, resource_id, f"Stripe: {message}")
            return GatewayRequestError(
                self.provider, f"Stripe {operation} failed: {message}", code=code
            )
        return GatewayRequestError(self.provider, f"Stripe {operation} failed: {error}")
