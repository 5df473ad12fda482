"""Payment gateway factory.

get_gateway() returns Stripe when STRIPE_SECRET_KEY is set; tests install a
FakeGateway with set_gateway().
"""

import os
from typing import Optional

from foodapp.payments.confirmation import PaidOrderResult, record_paid_order
from foodapp.payments.fake_adapter import FakeGateway
from foodapp.payments.port import (
    CheckoutItem,
    CheckoutSessionResult,
    PaymentError,
    PaymentGateway,
    PaymentVerification,
)
from foodapp.payments.stripe_adapter import StripeGateway

_current_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway; raises PaymentError when Stripe is not configured."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = StripeGateway(
            os.getenv("STRIPE_SECRET_KEY", ""),
            currency=os.getenv("STRIPE_CURRENCY", "usd"),
        )
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None


__all__ = [
    "CheckoutItem",
    "CheckoutSessionResult",
    "FakeGateway",
    "PaidOrderResult",
    "PaymentError",
    "PaymentGateway",
    "PaymentVerification",
    "StripeGateway",
    "get_gateway",
    "set_gateway",
    "reset_gateway",
    "record_paid_order",
]
