"""Payment gateway implementations.

Contains adapters for Razorpay, Stripe and Cashfree, plus the builder used
for recognized providers that have no adapter yet.
"""

from .razorpay import RazorpayGateway
from .stripe import StripeGateway, StripeWebhookVerifier
from .cashfree import CashfreeGateway, PaymentLink
from .unsupported import not_implemented

__all__ = [
    "RazorpayGateway",
    "StripeGateway",
    "StripeWebhookVerifier",
    "CashfreeGateway",
    "PaymentLink",
    "not_implemented",
]
