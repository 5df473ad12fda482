"""
Checkout exceptions.

Business-rule rejections are returned as result values; these exceptions cover
collaborator failures and misuse.
"""

from typing import Optional


class CheckoutError(Exception):
    """Base class for checkout failures."""


class BackendError(CheckoutError):
    """The data store rejected or failed an operation."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class OrderWriteError(CheckoutError):
    """A fatal step of the order commit failed."""

    def __init__(self, step: str, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.step = step
        self.message = message
        self.order_id = order_id


class CheckoutBusyError(CheckoutError):
    """An order placement is already in flight for this checkout."""


class CouponAdminError(CheckoutError):
    """Invalid coupon administration payload."""
