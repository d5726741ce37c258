"""Razorpay payment gateway implementation.

Orders are Razorpay orders; the merchant order id travels as the order
``receipt``. Payment status comes from the order's most relevant payment.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

import razorpay
from razorpay.errors import BadRequestError

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
from tenantpay.modules.payment_gateway.webhook import WebhookVerifier

logger = logging.getLogger(__name__)


def _from_epoch(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class RazorpayGateway(PaymentGatewayInterface):
    """Razorpay payment gateway implementation.

    Supports:
    - UPI, cards, net banking and wallets through Razorpay Checkout
    - Full and partial refunds
    - Checkout payment signature verification
    """

    provider = GatewayProvider.RAZORPAY.value
    display_name = "Razorpay"

    CHECKOUT_SCRIPT = "https://checkout.razorpay.com/v1/checkout.js"

    STATUS_NORMALIZER = StatusNormalizer(
        {
            # Order statuses
            "created": PaymentStatus.PENDING,
            "attempted": PaymentStatus.PROCESSING,
            "paid": PaymentStatus.PAID,
            # Payment statuses
            "authorized": PaymentStatus.PROCESSING,
            "captured": PaymentStatus.PAID,
            "failed": PaymentStatus.FAILED,
            "refunded": PaymentStatus.REFUNDED,
        },
        PaymentStatus.PENDING,
    )

    REFUND_STATUS_NORMALIZER = StatusNormalizer(
        {
            "pending": RefundStatus.PENDING,
            "processed": RefundStatus.PROCESSED,
            "failed": RefundStatus.FAILED,
        },
        RefundStatus.PENDING,
    )

    def __init__(
        self,
        credentials: ResolvedCredentials,
        webhook_tolerance_seconds: Optional[int] = None,
        client: Optional[razorpay.Client] = None,
    ):
        super().__init__(credentials, webhook_tolerance_seconds)
        if not credentials.api_key or not credentials.api_secret:
            raise GatewayRequestError(
                self.provider,
                "Razorpay requires a key id and key secret",
                code="credentials_missing",
            )
        self.key_id = credentials.api_key
        self._key_secret = credentials.api_secret
        self._client = client or razorpay.Client(auth=(credentials.api_key, credentials.api_secret))

    async def _create_order(self, request: CreateOrderRequest) -> PaymentOrder:
        notes = {key: str(value) for key, value in request.metadata.items()}
        if request.description:
            notes.setdefault("description", request.description)
        if request.customer.email:
            notes.setdefault("customer_email", request.customer.email)

        order = await self._run_sync(
            "create_order",
            self._client.order.create,
            data={
                "amount": to_minor_units(request.amount, request.currency),
                "currency": request.currency,
                "receipt": request.order_id,
                "notes": notes,
            },
        )

        return PaymentOrder(
            order_id=order.get("receipt") or request.order_id,
            gateway_order_id=order["id"],
            amount=from_minor_units(order.get("amount"), request.currency),
            currency=(order.get("currency") or request.currency).upper(),
            status=self._normalize_status(order.get("status")),
            metadata={
                "razorpay_order_id": order["id"],
                "receipt": order.get("receipt"),
                "key_id": self.key_id,
            },
        )

    async def _get_payment_status(self, order_id: str) -> PaymentStatusRecord:
        order = await self._run_sync(
            "get_payment_status", self._client.order.fetch, order_id, resource_id=order_id
        )
        payments = await self._run_sync(
            "get_payment_status", self._client.order.payments, order_id, resource_id=order_id
        )
        payment = self._latest_payment((payments or {}).get("items") or [])
        currency = (order.get("currency") or "INR").upper()

        if payment:
            status = self._normalize_status(payment.get("status"))
            amount_refunded = from_minor_units(payment.get("amount_refunded") or 0, currency)
        else:
            status = self._normalize_status(order.get("status"))
            amount_refunded = None

        return PaymentStatusRecord(
            order_id=order.get("receipt") or order_id,
            gateway_order_id=order["id"],
            gateway_payment_id=payment.get("id") if payment else None,
            status=status,
            amount=from_minor_units(order.get("amount"), currency),
            currency=currency,
            amount_refunded=amount_refunded,
            paid_at=_from_epoch(payment.get("created_at")) if payment and status == PaymentStatus.PAID else None,
            payment_method=payment.get("method") if payment else None,
            failure_reason=payment.get("error_description") if payment else None,
            metadata={
                "razorpay_order_id": order["id"],
                "razorpay_payment_id": payment.get("id") if payment else None,
            },
        )

    @staticmethod
    def _latest_payment(items: list[dict]) -> Optional[dict]:
        """Prefer a captured payment, otherwise the most recent attempt."""
        if not items:
            return None
        for item in items:
            if str(item.get("status", "")).lower() in ("captured", "refunded"):
                return item
        return max(items, key=lambda item: item.get("created_at") or 0)

    async def _get_refundable_payment(self, payment_id: str) -> RefundablePayment:
        payment = await self._run_sync(
            "refund_payment", self._client.payment.fetch, payment_id, resource_id=payment_id
        )
        currency = (payment.get("currency") or "INR").upper()
        return RefundablePayment(
            payment_id=payment_id,
            status=self._normalize_status(payment.get("status")),
            amount=from_minor_units(payment.get("amount"), currency),
            amount_refunded=from_minor_units(payment.get("amount_refunded") or 0, currency),
            currency=currency,
        )

    async def _refund_payment(self, request: RefundRequest) -> RefundRecord:
        currency = request.payment.currency
        data: dict = {}
        if request.amount is not None:
            data["amount"] = to_minor_units(request.amount, currency)
        notes = {key: str(value) for key, value in request.notes.items()}
        if request.reason:
            notes.setdefault("reason", request.reason)
        if notes:
            data["notes"] = notes

        refund = await self._run_sync(
            "refund_payment",
            self._client.payment.refund,
            request.payment_id,
            data,
            resource_id=request.payment_id,
        )
        refund_currency = (refund.get("currency") or currency).upper()
        return RefundRecord(
            refund_id=refund["id"],
            payment_id=refund.get("payment_id") or request.payment_id,
            status=self._normalize_refund_status(refund.get("status")),
            amount=from_minor_units(refund.get("amount"), refund_currency),
            currency=refund_currency,
            processed_at=_from_epoch(refund.get("created_at")),
            metadata={"speed_processed": refund.get("speed_processed")},
        )

    def _build_webhook_verifier(self, secret: str) -> WebhookVerifier:
        return WebhookVerifier(
            secret,
            encoding="hex",
            tolerance_seconds=self.webhook_tolerance_seconds,
        )

    def get_checkout_asset(self) -> CheckoutAsset:
        return CheckoutAsset(src=self.CHECKOUT_SCRIPT)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Verify the signature Razorpay Checkout returns after payment.

        Args:
            order_id: Razorpay order id
            payment_id: Razorpay payment id
            signature: ``razorpay_signature`` from the checkout handler

        Returns:
            True if the signature matches
        """
        if not (order_id and payment_id and signature):
            return False
        expected = hmac.new(
            self._key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))

    def _translate_error(
        self,
        operation: str,
        error: Exception,
        resource_id: Optional[str] = None,
    ) -> PaymentGatewayError:
        message = str(error)
        if isinstance(error, BadRequestError):
            if resource_id and "does not exist" in message.lower():
                return GatewayNotFoundError(self.provider, resource_id, f"Razorpay: {message}")
            return GatewayRequestError(
                self.provider,
                f"Razorpay {operation} failed: {message}",
                code=getattr(error, "error_code", None) or "bad_request",
            )
        return GatewayRequestError(self.provider, f"Razorpay {operation} failed: {message}")
