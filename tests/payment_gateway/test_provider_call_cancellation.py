"""Tests for provider calls whose caller is cancelled.

Tests that:
- A refund already sent to the provider completes when its caller is cancelled
- The outcome of such a call is logged once it finishes, including failures
"""

import asyncio
import logging

import pytest

from tenantpay.modules.payment_gateway.interface import CustomerDetails

from stubs import StubGateway, make_credentials

CUSTOMER = CustomerDetails(name="Asha Rao", email="asha@example.com")


class HeldRefundGateway(StubGateway):
    """Stub adapter whose refund call waits until released."""

    def __init__(self, credentials, fail: bool = False):
        super().__init__(credentials)
        self.fail = fail
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.finished = asyncio.Event()

    async def _refund_payment(self, request):
        return await self._call_provider(
            "refund_payment", self._held(request), resource_id=request.payment_id
        )

    async def _held(self, request):
        self.started.set()
        await self.release.wait()
        try:
            if self.fail:
                raise RuntimeError("provider timed out")
            return await super()._refund_payment(request)
        finally:
            self.finished.set()


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


async def _cancel_refund_in_flight(gateway: HeldRefundGateway) -> str:
    await gateway.create_order(10, "USD", "ord_1", CUSTOMER)
    payment_id = gateway.remote.mark_captured("ord_1")

    caller = asyncio.create_task(gateway.refund_payment(payment_id))
    await gateway.started.wait()
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    gateway.release.set()
    await asyncio.wait_for(gateway.finished.wait(), 1)
    await _settle()
    return payment_id


@pytest.mark.asyncio
class TestCancelledCaller:
    """Cancelling the caller stops the wait, not the provider call."""

    async def test_refund_is_recorded_after_caller_is_cancelled(self, caplog) -> None:
        gateway = HeldRefundGateway(make_credentials())

        with caplog.at_level(logging.INFO):
            payment_id = await _cancel_refund_in_flight(gateway)

        assert gateway.remote.payments[payment_id]["amount_refunded"] == 1000
        assert "caller cancelled, letting the provider call finish" in caplog.text
        assert "refund_payment finished after its caller was cancelled" in caplog.text

    async def test_failure_after_caller_is_cancelled_is_logged(self, caplog) -> None:
        gateway = HeldRefundGateway(make_credentials(), fail=True)

        with caplog.at_level(logging.INFO):
            payment_id = await _cancel_refund_in_flight(gateway)

        assert gateway.remote.payments[payment_id]["amount_refunded"] == 0
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert any(
            "refund_payment failed after its caller was cancelled: provider timed out"
            in r.getMessage()
            for r in errors
        )

    async def test_uncancelled_refund_returns_normally(self) -> None:
        gateway = HeldRefundGateway(make_credentials())
        await gateway.create_order(10, "USD", "ord_1", CUSTOMER)
        payment_id = gateway.remote.mark_captured("ord_1")

        caller = asyncio.create_task(gateway.refund_payment(payment_id))
        await gateway.started.wait()
        gateway.release.set()
        refund = await caller

        assert refund.amount == 10.0
        assert gateway.remote.payments[payment_id]["amount_refunded"] == 1000
