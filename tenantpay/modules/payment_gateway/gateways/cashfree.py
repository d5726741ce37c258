"""Cashfree payment gateway implementation.

Talks to the Cashfree PG REST API with httpx. Cashfree identifies orders by
the merchant order id, so that id doubles as the gateway order id; the
Cashfree-assigned ``cf_order_id`` is kept in metadata.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote

import httpx

from tenantpay.core.config import settings
from tenantpay.modules.payment_gateway.credentials import ResolvedCredentials
from tenantpay.modules.payment_gateway.currency import (
    Amount,
    from_minor_units,
    normalize_currency,
    to_minor_units,
)
from tenantpay.modules.payment_gateway.exceptions import (
    GatewayNotFoundError,
    GatewayRequestError,
)
from tenantpay.modules.payment_gateway.interface import (
    CheckoutAsset,
    CreateOrderRequest,
    CustomerDetails,
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


@dataclass
class PaymentLink:
    """A hosted Cashfree payment link."""
    link_id: str
    link_url: str
    status: str


def _cashfree_event(document: dict) -> tuple[Optional[str], Any]:
    return document.get("type") or document.get("event"), document.get("data") or document


def _order_path(order_id: str, *segments: str) -> str:
    """Build an ``/orders`` endpoint; each id is escaped as a single path segment."""
    return "/".join(["/orders", *(quote(str(part), safe="") for part in (order_id, *segments))])


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable Cashfree timestamp: {value}")
        return None


def extract_payment_method(payment_method: Optional[dict]) -> str:
    """Flatten Cashfree's nested payment_method object to ``kind:detail``."""
    if not payment_method:
        return "unknown"
    details = (
        ("card", "card_network"),
        ("upi", "upi_id"),
        ("netbanking", "netbanking_bank_code"),
        ("wallet", "channel"),
        ("paylater", "channel"),
        ("emi", "emi_bank"),
    )
    for kind, detail_key in details:
        method = payment_method.get(kind)
        if method:
            detail = method.get(detail_key) if isinstance(method, dict) else None
            return f"{kind}:{detail or kind}"
    return "unknown"


class CashfreeGateway(PaymentGatewayInterface):
    """Cashfree payment gateway implementation.

    Supports:
    - Orders with hosted checkout sessions
    - Full and partial refunds, refund status lookup
    - Payment links
    """

    provider = GatewayProvider.CASHFREE.value
    display_name = "Cashfree"

    SANDBOX_URL = "https://sandbox.cashfree.com/pg"
    PRODUCTION_URL = "https://api.cashfree.com/pg"

    SANDBOX_SCRIPT = "https://sandbox.cashfree.com/js/v3/cashfree.js"
    PRODUCTION_SCRIPT = "https://sdk.cashfree.com/js/v3/cashfree.js"

    # Order and payment statuses share one vocabulary table
    STATUS_NORMALIZER = StatusNormalizer(
        {
            # Order statuses
            "ACTIVE": PaymentStatus.PENDING,
            "PAID": PaymentStatus.PAID,
            "EXPIRED": PaymentStatus.CANCELLED,
            "TERMINATED": PaymentStatus.CANCELLED,
            "TERMINATION_REQUESTED": PaymentStatus.CANCELLED,
            "PARTIALLY_PAID": PaymentStatus.PROCESSING,
            # Payment statuses
            "SUCCESS": PaymentStatus.PAID,
            "FAILED": PaymentStatus.FAILED,
            "CANCELLED": PaymentStatus.CANCELLED,
            "USER_DROPPED": PaymentStatus.CANCELLED,
            "VOID": PaymentStatus.CANCELLED,
            "FLAGGED": PaymentStatus.PROCESSING,
            "PENDING": PaymentStatus.PENDING,
            "NOT_ATTEMPTED": PaymentStatus.PENDING,
        },
        PaymentStatus.PENDING,
    )

    REFUND_STATUS_NORMALIZER = StatusNormalizer(
        {
            "SUCCESS": RefundStatus.PROCESSED,
            "PROCESSED": RefundStatus.PROCESSED,
            "PENDING": RefundStatus.PENDING,
            "ONHOLD": RefundStatus.PENDING,
            "CANCELLED": RefundStatus.FAILED,
            "FAILED": RefundStatus.FAILED,
        },
        RefundStatus.PENDING,
    )

    def __init__(
        self,
        credentials: ResolvedCredentials,
        webhook_tolerance_seconds: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_version: Optional[str] = None,
    ):
        super().__init__(credentials, webhook_tolerance_seconds)
        if not credentials.api_key or not credentials.api_secret:
            raise GatewayRequestError(
                self.provider,
                "Cashfree requires a client id and client secret",
                code="credentials_missing",
            )
        self._client_id = credentials.api_key
        self._client_secret = credentials.api_secret
        self.api_version = api_version or settings.CASHFREE_API_VERSION
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.SANDBOX_URL if self.is_sandbox else self.PRODUCTION_URL

    def _headers(self) -> dict:
        return {
            "x-client-id": self._client_id,
            "x-client-secret": self._client_secret,
            "x-api-version": self.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        resource_id: Optional[str] = None,
    ) -> Any:
        """Make authenticated request to the Cashfree API.

        Args:
            method: HTTP method
            endpoint: API endpoint below the versioned base URL
            data: Request body data
            resource_id: Order or refund id used for not-found errors

        Returns:
            Response JSON
        """
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            transport=self._transport,
            timeout=None,
        ) as client:
            response = await client.request(method, endpoint, json=data)

        if response.status_code == 404 and resource_id:
            raise GatewayNotFoundError(
                self.provider, resource_id, f"Cashfree: {self._error_message(response)}"
            )
        if response.is_error:
            body = self._error_body(response)
            raise GatewayRequestError(
                self.provider,
                f"Cashfree {method} {endpoint} failed: {self._error_message(response)}",
                code=body.get("code") or body.get("type"),
            )
        return response.json() if response.content else {}

    @staticmethod
    def _error_body(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _error_message(self, response: httpx.Response) -> str:
        return self._error_body(response).get("message") or f"HTTP {response.status_code}"

    def _request(self, operation: str, method: str, endpoint: str, **kwargs):
        return self._call_provider(
            operation,
            self._make_request(method, endpoint, **kwargs),
            resource_id=kwargs.get("resource_id"),
        )

    @staticmethod
    def _major_units(amount: Amount, currency: str) -> float:
        return from_minor_units(to_minor_units(amount, currency), currency)

    # ==================== Contract hooks ====================

    async def _create_order(self, request: CreateOrderRequest) -> PaymentOrder:
        customer = request.customer
        order_request = {
            "order_id": request.order_id,
            "order_amount": self._major_units(request.amount, request.currency),
            "order_currency": request.currency,
            "customer_details": {
                "customer_id": customer.id or f"cust_{uuid.uuid4().hex[:12]}",
                "customer_name": customer.name,
                "customer_email": customer.email,
                "customer_phone": customer.phone or "",
            },
            "order_meta": {
                "return_url": request.return_url,
                "notify_url": request.notify_url,
            },
            "order_note": request.description or "",
        }
        if request.metadata:
            order_request["order_tags"] = {key: str(value) for key, value in request.metadata.items()}

        order = await self._request("create_order", "POST", "/orders", data=order_request)
        currency = normalize_currency(order.get("order_currency") or request.currency)

        return PaymentOrder(
            order_id=request.order_id,
            gateway_order_id=order.get("order_id") or request.order_id,
            session_id=order.get("payment_session_id"),
            redirect_url=(order.get("payments") or {}).get("url"),
            amount=float(order.get("order_amount") or order_request["order_amount"]),
            currency=currency,
            status=self._normalize_status(order.get("order_status") or "ACTIVE"),
            metadata={
                "cf_order_id": order.get("cf_order_id"),
                "payment_session_id": order.get("payment_session_id"),
            },
        )

    async def _get_payment_status(self, order_id: str) -> PaymentStatusRecord:
        order = await self._request(
            "get_payment_status", "GET", _order_path(order_id), resource_id=order_id
        )
        payments = await self.fetch_order_payments(order_id)
        currency = normalize_currency(order.get("order_currency") or "INR")
        base = {
            "order_id": order_id,
            "gateway_order_id": order.get("order_id") or order_id,
            "currency": currency,
            "amount": float(order.get("order_amount") or 0),
        }

        if not payments:
            return PaymentStatusRecord(
                status=self._normalize_status(order.get("order_status") or "ACTIVE"),
                metadata={
                    "cf_order_id": order.get("cf_order_id"),
                    "order_status": order.get("order_status"),
                },
                **base,
            )

        payment = self._select_payment(payments)
        status = self._normalize_status(payment.get("payment_status"))
        amount_refunded = None
        if status == PaymentStatus.PAID:
            amount_refunded = await self._refunded_amount(
                "get_payment_status", order_id, currency, processed_only=True
            )

        return PaymentStatusRecord(
            gateway_payment_id=str(payment.get("cf_payment_id") or "") or None,
            status=status,
            amount_refunded=amount_refunded,
            paid_at=_parse_datetime(payment.get("payment_completion_time")),
            failure_reason=payment.get("payment_message") if status == PaymentStatus.FAILED else None,
            payment_method=extract_payment_method(payment.get("payment_method")),
            metadata={
                "cf_order_id": order.get("cf_order_id"),
                "cf_payment_id": payment.get("cf_payment_id"),
                "payment_group": payment.get("payment_group"),
                "bank_reference": payment.get("bank_reference"),
            },
            **base,
        )

    async def _get_refundable_payment(self, payment_id: str) -> RefundablePayment:
        order_id, cf_payment_id = self._split_payment_id(payment_id)
        payments = await self.fetch_order_payments(order_id)
        if cf_payment_id:
            matching = [p for p in payments if str(p.get("cf_payment_id")) == cf_payment_id]
            if not matching:
                raise GatewayNotFoundError(self.provider, payment_id)
            payment = matching[0]
        elif payments:
            payment = self._select_payment(payments)
        else:
            raise GatewayRequestError(
                self.provider,
                f"Order {order_id} has no payment to refund",
                code="not_refundable",
            )

        currency = normalize_currency(payment.get("payment_currency") or "INR")
        return RefundablePayment(
            payment_id=payment_id,
            status=self._normalize_status(payment.get("payment_status")),
            amount=float(payment.get("payment_amount") or 0),
            amount_refunded=await self._refunded_amount("refund_payment", order_id, currency),
            currency=currency,
        )

    async def _refund_payment(self, request: RefundRequest) -> RefundRecord:
        order_id, cf_payment_id = self._split_payment_id(request.payment_id)
        currency = request.payment.currency
        refund_id = f"refund_{uuid.uuid4().hex[:16]}"
        note = request.reason or "Refund requested"
        if request.notes:
            note = " ".join([note, *(f"{key}={value}" for key, value in request.notes.items())])
        refund_request = {
            "refund_amount": self._major_units(request.resolved_amount, currency),
            "refund_id": refund_id,
            # Cashfree caps refund notes at 100 characters
            "refund_note": note[:100],
        }

        refund = await self._request(
            "refund_payment",
            "POST",
            _order_path(order_id, "refunds"),
            data=refund_request,
            resource_id=order_id,
        )
        record = self._to_refund_record(refund, refund_id, currency, request.payment_id)
        record.metadata["cf_payment_id"] = cf_payment_id
        return record

    def _build_webhook_verifier(self, secret: str) -> WebhookVerifier:
        return WebhookVerifier(
            secret,
            encoding="base64",
            include_timestamp=True,
            tolerance_seconds=self.webhook_tolerance_seconds,
            extract_event=_cashfree_event,
        )

    def get_checkout_asset(self) -> CheckoutAsset:
        return CheckoutAsset(src=self.SANDBOX_SCRIPT if self.is_sandbox else self.PRODUCTION_SCRIPT)

    # ==================== Cashfree-only operations ====================

    async def fetch_order_payments(self, order_id: str) -> list[dict]:
        """Fetch every payment attempt of an order, as Cashfree reports them."""
        with self._span("fetch_order_payments", order_id=order_id):
            payments = await self._request(
                "fetch_order_payments", "GET", _order_path(order_id, "payments"), resource_id=order_id
            )
        return payments if isinstance(payments, list) else []

    async def get_refund_status(self, order_id: str, refund_id: str) -> RefundRecord:
        """Fetch one refund of an order.

        Args:
            order_id: Merchant order id
            refund_id: Merchant refund id returned by refund_payment

        Returns:
            RefundRecord with the current refund status
        """
        with self._span("get_refund_status", order_id=order_id, refund_id=refund_id):
            refund = await self._request(
                "get_refund_status",
                "GET",
                _order_path(order_id, "refunds", refund_id),
                resource_id=refund_id,
            )
        return self._to_refund_record(refund, refund_id, "INR", order_id)

    async def create_payment_link(
        self,
        link_id: str,
        amount: Amount,
        customer: CustomerDetails,
        purpose: str,
        currency: str = "INR",
        expiry_time: Optional[datetime] = None,
        return_url: Optional[str] = None,
        notify_url: Optional[str] = None,
    ) -> PaymentLink:
        """Create a hosted payment link.

        Args:
            link_id: Merchant link id, unique per Cashfree account
            amount: Amount in major units
            customer: Customer the link is sent to
            purpose: Text shown on the payment page
            currency: ISO 4217 code
            expiry_time: When the link stops accepting payments
            return_url: Where Cashfree redirects after payment
            notify_url: Where Cashfree posts notifications

        Returns:
            PaymentLink
        """
        currency = self._validate_amount(amount, currency)
        link_request = {
            "link_id": link_id,
            "link_amount": self._major_units(amount, currency),
            "link_currency": currency,
            "link_purpose": purpose,
            "customer_details": {
                "customer_name": customer.name,
                "customer_email": customer.email,
                "customer_phone": customer.phone or "",
            },
            "link_meta": {
                "return_url": return_url,
                "notify_url": notify_url,
            },
        }
        if expiry_time is not None:
            link_request["link_expiry_time"] = expiry_time.isoformat()

        with self._span("create_payment_link", link_id=link_id):
            link = await self._request("create_payment_link", "POST", "/links", data=link_request)
        return PaymentLink(
            link_id=link.get("link_id") or link_id,
            link_url=link.get("link_url") or "",
            status=link.get("link_status") or "ACTIVE",
        )

    # ==================== Helpers ====================

    @staticmethod
    def _split_payment_id(payment_id: str) -> tuple[str, Optional[str]]:
        order_id, _, cf_payment_id = payment_id.partition(":")
        return order_id, cf_payment_id or None

    @staticmethod
    def _select_payment(payments: list[dict]) -> dict:
        """Prefer the successful payment, otherwise the latest attempt."""
        for payment in payments:
            if str(payment.get("payment_status", "")).upper() == "SUCCESS":
                return payment
        return payments[-1]

    async def _refunded_amount(
        self,
        operation: str,
        order_id: str,
        currency: str,
        processed_only: bool = False,
    ) -> float:
        """Total of the order's refunds.

        Pending refunds count toward the refund bound but not toward the
        REFUNDED status; failed refunds count toward neither.
        """
        counted = {RefundStatus.PROCESSED}
        if not processed_only:
            counted.add(RefundStatus.PENDING)
        refunds = await self._request(
            operation, "GET", _order_path(order_id, "refunds"), resource_id=order_id
        )
        total = 0
        for refund in refunds if isinstance(refunds, list) else []:
            if self._normalize_refund_status(refund.get("refund_status")) in counted:
                total += to_minor_units(refund.get("refund_amount") or 0, currency)
        return from_minor_units(total, currency)

    def _to_refund_record(
        self,
        refund: dict,
        refund_id: str,
        currency: str,
        payment_id: str,
    ) -> RefundRecord:
        refund_currency = normalize_currency(refund.get("refund_currency") or currency)
        return RefundRecord(
            refund_id=refund.get("refund_id") or refund_id,
            payment_id=payment_id,
            status=self._normalize_refund_status(refund.get("refund_status")),
            amount=float(refund.get("refund_amount") or 0),
            currency=refund_currency,
            processed_at=_parse_datetime(refund.get("processed_at")),
            metadata={"cf_refund_id": refund.get("cf_refund_id")},
        )
