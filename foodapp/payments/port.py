"""Payment gateway port (abstract interface).

Card payments go through a hosted checkout page: the server creates a session,
the customer pays on the processor's page, and the success page verifies the
session before the order is recorded.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class PaymentError(Exception):
    """The payment processor failed or refused the request."""


@dataclass(frozen=True)
class CheckoutItem:
    name: str
    price: float
    quantity: int = 1


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: Optional[str]


@dataclass
class PaymentVerification:
    """What the processor reports about a checkout session."""

    session_id: str
    paid: bool
    status: str = "open"
    payment_status: str = "unpaid"
    amount_total: int = 0  # minor units
    currency: str = ""
    email: str = ""
    order_type: str = ""
    restaurant_id: str = ""
    store_id: str = ""
    success_redirect: str = ""
    client_reference_id: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> float:
        """Total in major currency units."""
        return self.amount_total / 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "session_id": self.session_id,
            "paid": self.paid,
            "status": self.status,
            "payment_status": self.payment_status,
            "amount_total": self.amount_total,
            "currency": self.currency,
            "email": self.email,
            "order_type": self.order_type,
            "restaurant_id": self.restaurant_id,
            "store_id": self.store_id,
            "success_redirect": self.success_redirect,
            "client_reference_id": self.client_reference_id,
            "metadata": dict(self.metadata),
        }


def pick_meta(metadata: Optional[Dict[str, Any]], keys: List[str]) -> str:
    """First non-blank metadata value among keys."""
    if not metadata:
        return ""
    for key in keys:
        value = metadata.get(key)
        if value is not None and str(value).strip():
            return str(value)
    return ""


def normalize_order_type(raw: Any) -> str:
    text = str(raw or "").strip().lower()
    if "groc" in text:
        return "grocery"
    if "rest" in text:
        return "restaurant"
    return text


def clean_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    """Stringify values and drop blanks; processors only accept string metadata."""
    cleaned = {}
    for key, value in metadata.items():
        text = "" if value is None else str(value).strip()
        if text:
            cleaned[key] = text
    return cleaned


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_checkout_session(
        self,
        items: List[CheckoutItem],
        metadata: Dict[str, Any],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        """Create a hosted checkout session and return its id and URL."""
        ...

    @abstractmethod
    def verify_session(self, session_id: str) -> PaymentVerification:
        """Fetch the payment state of a checkout session."""
        ...
