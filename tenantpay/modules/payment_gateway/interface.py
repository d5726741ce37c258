"""Payment Gateway Interface - Abstract base class for all gateway implementations.

Defines the contract every provider adapter follows. Public operations are
template methods: they validate the request, open a tracing span and then
call the provider-specific hook, so every adapter shares one set of
signatures and error semantics.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from tenantpay.core.config import settings
from tenantpay.core.tracing import create_span, record_exception
from tenantpay.modules.payment_gateway.credentials import ResolvedCredentials
from tenantpay.modules.payment_gateway.currency import (
    Amount,
    from_minor_units,
    is_supported_currency,
    normalize_currency,
    parse_amount,
    to_minor_units,
)
from tenantpay.modules.payment_gateway.exceptions import (
    GatewayRequestError,
    PaymentGatewayError,
    WebhookSecretNotConfiguredError,
)
from tenantpay.modules.payment_gateway.models import GatewayEnvironment
from tenantpay.modules.payment_gateway.status import (
    PaymentStatus,
    RefundStatus,
    StatusNormalizer,
)
from tenantpay.modules.payment_gateway.webhook import (
    WebhookVerificationResult,
    WebhookVerifier,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CustomerDetails:
    """Customer the order is raised for."""
    name: str
    email: str
    id: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class CreateOrderRequest:
    """Validated order request handed to an adapter."""
    order_id: str
    amount: Amount
    currency: str
    customer: CustomerDetails
    description: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    return_url: Optional[str] = None
    notify_url: Optional[str] = None


@dataclass
class PaymentOrder:
    """Result of order creation."""
    order_id: str
    gateway_order_id: str
    amount: float
    currency: str
    status: PaymentStatus
    session_id: Optional[str] = None
    redirect_url: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class PaymentStatusRecord:
    """Full status of an order as reported by the provider."""
    order_id: str
    gateway_order_id: str
    status: PaymentStatus
    amount: float
    currency: str
    gateway_payment_id: Optional[str] = None
    # None when the provider did not report refunds for this lookup
    amount_refunded: Optional[float] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class RefundablePayment:
    """Snapshot of a payment taken right before a refund."""
    payment_id: str
    status: PaymentStatus
    amount: float
    amount_refunded: float
    currency: str

    @property
    def remaining(self) -> float:
        remaining_units = (
            to_minor_units(self.amount, self.currency)
            - to_minor_units(self.amount_refunded, self.currency)
        )
        return from_minor_units(max(remaining_units, 0), self.currency)


@dataclass
class RefundRequest:
    """Validated refund request handed to an adapter."""
    payment_id: str
    payment: RefundablePayment
    # None means refund everything that is left
    amount: Optional[float] = None
    reason: Optional[str] = None
    notes: dict = field(default_factory=dict)

    @property
    def resolved_amount(self) -> float:
        return self.payment.remaining if self.amount is None else self.amount


@dataclass
class RefundRecord:
    """Result of a refund operation."""
    refund_id: str
    payment_id: str
    status: RefundStatus
    amount: float
    currency: str
    processed_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class CheckoutAsset:
    """Client-side script a checkout page must load for this provider."""
    src: str
    integrity: Optional[str] = None


def apply_refund_rule(record: PaymentStatusRecord) -> PaymentStatusRecord:
    """Derive REFUNDED from amounts rather than from provider side effects.

    An order is REFUNDED only once the refunded amount covers the paid
    amount; a partially refunded order stays PAID.
    """
    if record.amount_refunded is None or record.amount <= 0:
        return record
    if record.status not in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
        return record
    paid = to_minor_units(record.amount, record.currency)
    refunded = to_minor_units(record.amount_refunded, record.currency)
    record.status = PaymentStatus.REFUNDED if refunded >= paid else PaymentStatus.PAID
    return record


class PaymentGatewayInterface(ABC):
    """Abstract interface for all payment gateway implementations.

    Subclasses set ``provider``, ``display_name``, ``STATUS_NORMALIZER`` and
    ``REFUND_STATUS_NORMALIZER`` and implement the underscore hooks. Provider
    SDK types never leave an adapter: hooks return the dataclasses above and
    raise only PaymentGatewayError subclasses.
    """

    provider: str = ""
    display_name: str = ""

    STATUS_NORMALIZER: StatusNormalizer = StatusNormalizer({}, PaymentStatus.PENDING)
    REFUND_STATUS_NORMALIZER: StatusNormalizer = StatusNormalizer({}, RefundStatus.PENDING)

    def __init__(
        self,
        credentials: ResolvedCredentials,
        webhook_tolerance_seconds: Optional[int] = None,
    ):
        """Initialize gateway from decrypted credentials.

        The credentials object itself is not kept; adapters copy only the
        values their client needs.

        Args:
            credentials: Short-lived decrypted configuration
            webhook_tolerance_seconds: Replay window for signed timestamps
        """
        self.config_id = credentials.config_id
        self.organization_id = credentials.organization_id
        self.environment = GatewayEnvironment(credentials.environment)
        self._webhook_secret = credentials.webhook_secret
        self.webhook_tolerance_seconds = (
            settings.WEBHOOK_TOLERANCE_SECONDS
            if webhook_tolerance_seconds is None
            else webhook_tolerance_seconds
        )
        self._verifier: Optional[WebhookVerifier] = None

    @property
    def is_sandbox(self) -> bool:
        return self.environment == GatewayEnvironment.SANDBOX

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(organization={self.organization_id}, "
            f"config={self.config_id}, environment={self.environment.value})>"
        )

    # ==================== Contract operations ====================

    async def create_order(
        self,
        amount: Amount,
        currency: str,
        order_id: str,
        customer: CustomerDetails,
        metadata: Optional[dict] = None,
        return_url: Optional[str] = None,
        notify_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentOrder:
        """Create an order with the provider.

        Args:
            amount: Amount in major units, must be positive
            currency: ISO 4217 currency code
            order_id: Caller-supplied order id, unique per organization
            customer: Customer details
            metadata: Opaque key/value pairs passed to the provider
            return_url: Where the provider redirects after checkout
            notify_url: Where the provider posts server notifications
            description: Human-readable order description

        Returns:
            PaymentOrder with the gateway-assigned order id

        Raises:
            GatewayRequestError: Invalid request or provider rejection
        """
        currency = self._validate_amount(amount, currency)
        if not order_id:
            raise GatewayRequestError(self.provider, "order_id is required", code="invalid_order_id")

        request = CreateOrderRequest(
            order_id=order_id,
            amount=amount,
            currency=currency,
            customer=customer,
            description=description,
            metadata=dict(metadata or {}),
            return_url=return_url,
            notify_url=notify_url,
        )
        with self._span("create_order", order_id=order_id):
            order = await self._create_order(request)
        logger.info(
            f"{self.display_name} order {order.gateway_order_id} created for "
            f"organization {self.organization_id} ({order.status.value})"
        )
        return order

    async def get_payment_status(self, order_id: str) -> PaymentStatusRecord:
        """Fetch the full status record of an order.

        Args:
            order_id: Gateway order id returned by create_order

        Returns:
            PaymentStatusRecord with a canonical status

        Raises:
            GatewayNotFoundError: The provider has no record of the order
            GatewayRequestError: The provider rejected the lookup
        """
        if not order_id:
            raise GatewayRequestError(self.provider, "order_id is required", code="invalid_order_id")
        with self._span("get_payment_status", order_id=order_id):
            record = await self._get_payment_status(order_id)
        return apply_refund_rule(record)

    async def refund_payment(
        self,
        payment_id: str,
        amount: Optional[Amount] = None,
        reason: Optional[str] = None,
        notes: Optional[dict] = None,
    ) -> RefundRecord:
        """Refund a paid payment, fully or partially.

        Args:
            payment_id: Gateway payment id
            amount: Partial amount in major units (full refund when omitted)
            reason: Refund reason
            notes: Key/value notes passed to the provider

        Returns:
            RefundRecord describing the refund

        Raises:
            GatewayRequestError: Payment not refundable, amount out of bounds,
                or provider rejection
            GatewayNotFoundError: The provider has no record of the payment
        """
        if not payment_id:
            raise GatewayRequestError(self.provider, "payment_id is required", code="invalid_payment_id")
        refund_amount = None if amount is None else self._parse_positive(amount, "Refund amount")

        with self._span("refund_payment", payment_id=payment_id):
            payment = await self._get_refundable_payment(payment_id)
            self._check_refundable(payment, refund_amount)
            request = RefundRequest(
                payment_id=payment_id,
                payment=payment,
                amount=None if refund_amount is None else float(refund_amount),
                reason=reason,
                notes=dict(notes or {}),
            )
            refund = await self._refund_payment(request)
        logger.info(
            f"{self.display_name} refund {refund.refund_id} for payment {payment_id}: "
            f"{refund.amount} {refund.currency} ({refund.status.value})"
        )
        return refund

    def verify_webhook_signature(
        self,
        signature: str,
        payload: Union[bytes, str],
        timestamp: Optional[str] = None,
    ) -> WebhookVerificationResult:
        """Verify that a webhook body was signed by this provider.

        Never raises for forged or malformed input; returns is_valid=False.

        Args:
            signature: Signature header value
            payload: Raw request body, exactly as received
            timestamp: Timestamp header value, if the provider sends one

        Returns:
            WebhookVerificationResult

        Raises:
            WebhookSecretNotConfiguredError: No webhook secret is stored
        """
        verifier = self.get_webhook_verifier()
        with self._span("verify_webhook_signature"):
            result = verifier.verify(signature, payload, timestamp)
        if not result.is_valid:
            logger.warning(
                f"{self.display_name} webhook rejected for organization "
                f"{self.organization_id}: {result.error}"
            )
        return result

    def get_webhook_verifier(self) -> WebhookVerifier:
        """Get the verifier bound to this gateway's webhook secret."""
        if not self._webhook_secret:
            raise WebhookSecretNotConfiguredError(self.provider)
        if self._verifier is None:
            self._verifier = self._build_webhook_verifier(self._webhook_secret)
        return self._verifier

    @abstractmethod
    def get_checkout_asset(self) -> CheckoutAsset:
        """Get the checkout script reference for this provider."""

    async def aclose(self) -> None:
        """Release provider clients held by this adapter."""

    # ==================== Provider hooks ====================

    @abstractmethod
    async def _create_order(self, request: CreateOrderRequest) -> PaymentOrder:
        """Create the order with the provider."""

    @abstractmethod
    async def _get_payment_status(self, order_id: str) -> PaymentStatusRecord:
        """Fetch the order and its latest payment from the provider."""

    @abstractmethod
    async def _get_refundable_payment(self, payment_id: str) -> RefundablePayment:
        """Fetch the payment a refund is requested for."""

    @abstractmethod
    async def _refund_payment(self, request: RefundRequest) -> RefundRecord:
        """Issue the refund with the provider."""

    @abstractmethod
    def _build_webhook_verifier(self, secret: str) -> WebhookVerifier:
        """Build the verifier implementing this provider's signing scheme."""

    # ==================== Shared helpers ====================

    def _normalize_status(self, native_status: Optional[str]) -> PaymentStatus:
        return self.STATUS_NORMALIZER.normalize(native_status)

    def _normalize_refund_status(self, native_status: Optional[str]) -> RefundStatus:
        return self.REFUND_STATUS_NORMALIZER.normalize(native_status)

    def _parse_positive(self, amount: Amount, label: str = "Amount") -> Decimal:
        value = parse_amount(amount)
        if value is None or value <= 0:
            raise GatewayRequestError(
                self.provider, f"{label} must be greater than zero", code="invalid_amount"
            )
        return value

    def _require_minor_units(self, amount: Amount, currency: str, label: str = "Amount") -> int:
        # Amounts below half a minor unit would reach the provider as zero
        units = to_minor_units(amount, currency)
        if units <= 0:
            raise GatewayRequestError(
                self.provider,
                f"{label} {amount} is less than the smallest unit of {currency}",
                code="invalid_amount",
            )
        return units

    def _validate_amount(self, amount: Amount, currency: str) -> str:
        value = self._parse_positive(amount)
        if not is_supported_currency(currency):
            raise GatewayRequestError(
                self.provider, f"Unrecognized currency code: {currency!r}", code="invalid_currency"
            )
        currency = normalize_currency(currency)
        self._require_minor_units(value, currency)
        return currency

    def _check_refundable(self, payment: RefundablePayment, amount: Optional[Amount]) -> None:
        status = payment.status
        if status == PaymentStatus.PAID:
            paid = to_minor_units(payment.amount, payment.currency)
            refunded = to_minor_units(payment.amount_refunded, payment.currency)
            if paid > 0 and refunded >= paid:
                status = PaymentStatus.REFUNDED
        if status != PaymentStatus.PAID:
            raise GatewayRequestError(
                self.provider,
                f"Payment {payment.payment_id} is not refundable in status '{status.value}'",
                code="not_refundable",
            )
        if amount is None:
            return
        requested = self._require_minor_units(amount, payment.currency, "Refund amount")
        remaining = to_minor_units(payment.remaining, payment.currency)
        if requested > remaining:
            raise GatewayRequestError(
                self.provider,
                f"Refund amount {amount} exceeds refundable amount "
                f"{payment.remaining} {payment.currency}",
                code="refund_amount_exceeded",
            )

    async def _call_provider(
        self,
        operation: str,
        call: Awaitable[T],
        resource_id: Optional[str] = None,
    ) -> T:
        """Await a provider call and translate its failures.

        The call is shielded: cancelling the caller stops the wait, not the
        provider-side mutation. A call left running that way is logged when
        it finishes.
        """
        task = asyncio.ensure_future(call)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.warning(
                    f"{self.display_name} {operation} caller cancelled, "
                    f"letting the provider call finish"
                )
                task.add_done_callback(self._detached_call_done(operation))
            raise
        except PaymentGatewayError as e:
            record_exception(e)
            logger.error(f"{self.display_name} {operation} error: {e}")
            raise
        except Exception as e:
            error = self._translate_error(operation, e, resource_id)
            record_exception(error)
            logger.error(f"{self.display_name} {operation} error: {error}")
            raise error from e

    def _detached_call_done(self, operation: str) -> Callable[["asyncio.Future[Any]"], None]:
        def done(task: "asyncio.Future[Any]") -> None:
            if task.cancelled():
                logger.warning(f"{self.display_name} {operation} was cancelled before it finished")
                return
            error = task.exception()
            if error is not None:
                logger.error(
                    f"{self.display_name} {operation} failed after its caller was cancelled: {error}"
                )
            else:
                logger.info(f"{self.display_name} {operation} finished after its caller was cancelled")
        return done

    async def _run_sync(
        self,
        operation: str,
        func: Callable[..., T],
        *args: Any,
        resource_id: Optional[str] = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking SDK call in a worker thread."""
        return await self._call_provider(
            operation,
            asyncio.to_thread(func, *args, **kwargs),
            resource_id=resource_id,
        )

    def _translate_error(
        self,
        operation: str,
        error: Exception,
        resource_id: Optional[str] = None,
    ) -> PaymentGatewayError:
        """Convert a provider exception into a gateway error kind."""
        return GatewayRequestError(self.provider, f"{self.display_name} {operation} failed: {error}")

    def _span(self, operation: str, **attributes: Any):
        return create_span(
            f"payment_gateway.{operation}",
            attributes={
                "gateway.provider": self.provider,
                "organization.id": self.organization_id,
                **attributes,
            },
        )
