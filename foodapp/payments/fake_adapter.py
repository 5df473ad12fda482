"""Configurable fake payment gateway for development and testing.

Sessions live in memory. A session is unpaid until mark_paid() is called,
or paid immediately when auto_pay is on.
"""

from typing import Any, Dict, List, Optional
from uuid import uuid4

from foodapp.payments.port import (
    CheckoutItem,
    CheckoutSessionResult,
    PaymentError,
    PaymentGateway,
    PaymentVerification,
    clean_metadata,
    normalize_order_type,
    pick_meta,
)


class FakeGateway(PaymentGateway):
    """In-memory checkout sessions."""

    def __init__(self, auto_pay: bool = False, currency: str = "usd") -> None:
        self.auto_pay = auto_pay
        self.currency = currency.upper()
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[dict] = []
        self.failure: Optional[str] = None

    def configure(self, failure: Optional[str] = None, auto_pay: Optional[bool] = None) -> None:
        """Make every call fail with a message, or restore normal behavior."""
        self.failure = failure
        if auto_pay is not None:
            self.auto_pay = auto_pay

    def mark_paid(self, session_id: str, email: str = "") -> None:
        session = self.sessions[session_id]
        session["payment_status"] = "paid"
        session["status"] = "complete"
        if email:
            session["email"] = email

    def create_checkout_session(
        self,
        items: List[CheckoutItem],
        metadata: Dict[str, Any],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        self.calls.append({"method": "create_checkout_session", "items": list(items), "metadata": metadata})
        if self.failure:
            raise PaymentError(self.failure)

        session_id = f"cs_test_{uuid4().hex[:24]}"
        self.sessions[session_id] = {
            "amount_total": sum(int(round(i.price * 100)) * max(1, i.quantity) for i in items),
            "metadata": clean_metadata(metadata),
            "payment_status": "paid" if self.auto_pay else "unpaid",
            "status": "complete" if self.auto_pay else "open",
            "email": "",
        }
        url = f"https://checkout.example.test/pay/{session_id}"
        return CheckoutSessionResult(session_id=session_id, url=url)

    def verify_session(self, session_id: str) -> PaymentVerification:
        self.calls.append({"method": "verify_session", "session_id": session_id})
        if self.failure:
            raise PaymentError(self.failure)
        session = self.sessions.get(session_id)
        if session is None:
            raise PaymentError(f"No such checkout.session: {session_id}")

        md = session["metadata"]
        return PaymentVerification(
            session_id=session_id,
            paid=session["payment_status"] == "paid",
            status=session["status"],
            payment_status=session["payment_status"],
            amount_total=session["amount_total"],
            currency=self.currency,
            email=session["email"],
            order_type=normalize_order_type(pick_meta(md, ["order_type"])),
            restaurant_id=pick_meta(md, ["restaurant_id"]),
            store_id=pick_meta(md, ["store_id"]),
            success_redirect=pick_meta(md, ["success_redirect"]),
            metadata=dict(md),
        )
