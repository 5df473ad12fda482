"""Stripe payment gateway adapter.

Uses Stripe Checkout: line items are sent in minor units, the session id comes
back through the success URL and is verified with a retrieve call.
"""

import logging
from typing import Any, Dict, List

import stripe

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

logger = logging.getLogger(__name__)


def _plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, currency: str = "usd") -> None:
        if not api_key:
            raise PaymentError("Missing STRIPE_SECRET_KEY")
        self.api_key = api_key
        self.currency = currency.lower()

    def create_checkout_session(
        self,
        items: List[CheckoutItem],
        metadata: Dict[str, Any],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        line_items = [
            {
                "quantity": max(1, int(item.quantity or 1)),
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": item.name or "Item"},
                    "unit_amount": int(round(float(item.price or 0) * 100)),
                },
            }
            for item in items
        ]
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        md = clean_metadata(metadata)
        if md:
            params["metadata"] = md

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session failed: {e}")
            raise PaymentError(e.user_message or str(e) or "Stripe error") from e

        return CheckoutSessionResult(session_id=session.id, url=session.url)

    def verify_session(self, session_id: str) -> PaymentVerification:
        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                expand=["customer_details", "payment_intent"],
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session verify failed for {session_id}: {e}")
            raise PaymentError(e.user_message or str(e) or "Verify session error") from e

        md = _plain(getattr(session, "metadata", None))
        details = _plain(getattr(session, "customer_details", None))
        payment_status = str(getattr(session, "payment_status", None) or "unpaid")
        amount_total = getattr(session, "amount_total", None)

        return PaymentVerification(
            session_id=session.id,
            paid=payment_status == "paid",
            status=str(getattr(session, "status", None) or "open"),
            payment_status=payment_status,
            amount_total=amount_total if isinstance(amount_total, int) else 0,
            currency=str(getattr(session, "currency", None) or "").upper(),
            email=details.get("email") or getattr(session, "customer_email", None) or "",
            order_type=normalize_order_type(
                pick_meta(md, ["order_type", "orderType", "type", "category", "flow", "source"])
            ),
            restaurant_id=pick_meta(md, ["restaurant_id", "restaurantId", "rest_id", "restId"]),
            store_id=pick_meta(md, ["store_id", "storeId", "grocery_store_id", "groceryStoreId"]),
            success_redirect=pick_meta(
                md, ["success_redirect", "successRedirect", "redirect", "redirect_to", "redirectTo"]
            ),
            client_reference_id=str(getattr(session, "client_reference_id", None) or ""),
            metadata=md,
        )
