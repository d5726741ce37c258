"""Property-based tests for refund bounds.

Tests that:
- The sum of successful refunds never exceeds the paid amount
- A refund larger than the remaining amount is rejected before the provider is called
- Only paid payments are refundable
- An order is REFUNDED only once refunds cover the paid amount
"""

import pytest
from hypothesis import given, settings, strategies as st

from tenantpay.modules.payment_gateway.currency import from_minor_units
from tenantpay.modules.payment_gateway.exceptions import GatewayRequestError
from tenantpay.modules.payment_gateway.interface import (
    CustomerDetails,
    PaymentStatusRecord,
    apply_refund_rule,
)
from tenantpay.modules.payment_gateway.status import PaymentStatus, RefundStatus

from stubs import StubGateway, StubProvider, make_credentials

CUSTOMER = CustomerDetails(name="Asha Rao", email="asha@example.com")


async def _paid_order(paid_units: int, currency: str = "INR"):
    remote = StubProvider()
    gateway = StubGateway(make_credentials(), remote=remote)
    order = await gateway.create_order(
        amount=from_minor_units(paid_units, currency),
        currency=currency,
        order_id="ord_1",
        customer=CUSTOMER,
    )
    payment_id = remote.mark_captured("ord_1")
    return gateway, remote, order, payment_id


class TestRefundBound:
    """Cumulative refunds are bounded by the paid amount."""

    @pytest.mark.asyncio
    @given(
        paid_units=st.integers(min_value=1, max_value=10_000_000),
        requests=st.lists(st.integers(min_value=1, max_value=20_000_000), min_size=1, max_size=8),
    )
    @settings(max_examples=100)
    async def test_refunds_never_exceed_paid_amount(self, paid_units, requests) -> None:
        gateway, remote, _, payment_id = await _paid_order(paid_units)
        refunded_units = 0

        for requested_units in requests:
            remaining_units = paid_units - refunded_units
            amount = from_minor_units(requested_units, "INR")
            if remaining_units == 0:
                with pytest.raises(GatewayRequestError) as exc_info:
                    await gateway.refund_payment(payment_id, amount=amount)
                assert exc_info.value.code == "not_refundable"
            elif requested_units > remaining_units:
                with pytest.raises(GatewayRequestError) as exc_info:
                    await gateway.refund_payment(payment_id, amount=amount)
                assert exc_info.value.code == "refund_amount_exceeded"
            else:
                refund = await gateway.refund_payment(payment_id, amount=amount)
                assert refund.status == RefundStatus.PROCESSED
                assert refund.amount == amount
                refunded_units += requested_units

            assert remote.payments[payment_id]["amount_refunded"] == refunded_units
            assert refunded_units <= paid_units

    @pytest.mark.asyncio
    @given(
        paid_units=st.integers(min_value=2, max_value=10_000_000),
        data=st.data(),
    )
    @settings(max_examples=100)
    async def test_status_is_refunded_only_when_fully_covered(self, paid_units, data) -> None:
        gateway, _, _, payment_id = await _paid_order(paid_units)
        partial = data.draw(st.integers(min_value=1, max_value=paid_units - 1))

        await gateway.refund_payment(payment_id, amount=from_minor_units(partial, "INR"))
        assert (await gateway.get_payment_status("ord_1")).status == PaymentStatus.PAID

        await gateway.refund_payment(payment_id)
        record = await gateway.get_payment_status("ord_1")
        assert record.status == PaymentStatus.REFUNDED
        assert record.amount_refunded == record.amount


@pytest.mark.asyncio
class TestRefundPreconditions:
    """Requests rejected before they reach the provider."""

    async def test_unpaid_payment_is_not_refundable(self) -> None:
        remote = StubProvider()
        gateway = StubGateway(make_credentials(), remote=remote)
        await gateway.create_order(100, "INR", "ord_1", CUSTOMER)
        payment_id = remote.mark_captured("ord_1")
        remote.payments[payment_id]["status"] = "failed"

        with pytest.raises(GatewayRequestError) as exc_info:
            await gateway.refund_payment(payment_id)
        assert exc_info.value.code == "not_refundable"
        assert remote.payments[payment_id]["amount_refunded"] == 0

    @pytest.mark.parametrize("amount", [0, -1, -0.01])
    async def test_non_positive_amount_is_rejected(self, amount) -> None:
        gateway, remote, _, payment_id = await _paid_order(10_000)

        with pytest.raises(GatewayRequestError) as exc_info:
            await gateway.refund_payment(payment_id, amount=amount)
        assert exc_info.value.code == "invalid_amount"
        assert remote.payments[payment_id]["amount_refunded"] == 0

    @pytest.mark.parametrize("amount", ["abc", "", "nan", "inf", 0.004, "0.0049"])
    async def test_unusable_amount_is_rejected(self, amount) -> None:
        gateway, remote, _, payment_id = await _paid_order(10_000)

        with pytest.raises(GatewayRequestError) as exc_info:
            await gateway.refund_payment(payment_id, amount=amount)
        assert exc_info.value.code == "invalid_amount"
        assert remote.payments[payment_id]["amount_refunded"] == 0

    async def test_amount_below_smallest_yen_is_rejected(self) -> None:
        gateway, remote, _, payment_id = await _paid_order(5000, "JPY")

        with pytest.raises(GatewayRequestError) as exc_info:
            await gateway.refund_payment(payment_id, amount=0.4)
        assert exc_info.value.code == "invalid_amount"
        assert remote.payments[payment_id]["amount_refunded"] == 0

    async def test_numeric_string_amount_is_accepted(self) -> None:
        gateway, remote, _, payment_id = await _paid_order(10_000)

        refund = await gateway.refund_payment(payment_id, amount="12.50")

        assert refund.amount == 12.5
        assert remote.payments[payment_id]["amount_refunded"] == 1250

    async def test_full_refund_without_amount_refunds_remaining(self) -> None:
        gateway, _, _, payment_id = await _paid_order(10_000)
        await gateway.refund_payment(payment_id, amount=25)

        refund = await gateway.refund_payment(payment_id)

        assert refund.amount == 75.0
        assert refund.currency == "INR"

    async def test_zero_decimal_currency_bounds(self) -> None:
        gateway, _, order, payment_id = await _paid_order(5000, "JPY")
        assert order.amount == 5000.0

        with pytest.raises(GatewayRequestError):
            await gateway.refund_payment(payment_id, amount=5001)
        refund = await gateway.refund_payment(payment_id, amount=5000)
        assert refund.amount == 5000.0


class TestRefundRule:
    """REFUNDED is derived from amounts, not provider side effects."""

    @given(
        paid_units=st.integers(min_value=1, max_value=10_000_000),
        refunded_units=st.integers(min_value=0, max_value=20_000_000),
        status=st.sampled_from([PaymentStatus.PAID, PaymentStatus.REFUNDED]),
    )
    @settings(max_examples=100)
    def test_refund_rule(self, paid_units, refunded_units, status) -> None:
        record = PaymentStatusRecord(
            order_id="ord_1",
            gateway_order_id="gw_1",
            status=status,
            amount=from_minor_units(paid_units, "USD"),
            currency="USD",
            amount_refunded=from_minor_units(refunded_units, "USD"),
        )

        result = apply_refund_rule(record)

        expected = PaymentStatus.REFUNDED if refunded_units >= paid_units else PaymentStatus.PAID
        assert result.status == expected

    def test_unknown_refund_amount_keeps_provider_status(self) -> None:
        record = PaymentStatusRecord(
            order_id="ord_1",
            gateway_order_id="gw_1",
            status=PaymentStatus.REFUNDED,
            amount=10.0,
            currency="USD",
        )
        assert apply_refund_rule(record).status == PaymentStatus.REFUNDED

    def test_other_statuses_are_untouched(self) -> None:
        record = PaymentStatusRecord(
            order_id="ord_1",
            gateway_order_id="gw_1",
            status=PaymentStatus.FAILED,
            amount=10.0,
            currency="USD",
            amount_refunded=10.0,
        )
        assert apply_refund_rule(record).status == PaymentStatus.FAILED
