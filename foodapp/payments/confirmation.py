"""
Paid-order recording

After the processor confirms a card payment, the order is written from the
customer's cart. Recording is idempotent per checkout session: a repeated
confirmation returns the existing order and only fills in missing items.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from foodapp.backend.port import ORDER_TABLES
from foodapp.checkout.addresses import DeliveryDetails
from foodapp.checkout.cart_store import CartLine
from foodapp.checkout.errors import BackendError
from foodapp.checkout.ladder import grocery_item_ladder, paid_order_ladder
from foodapp.checkout.totals import subtotal_of
from foodapp.checkout.money import as_amount

from .port import PaymentError, PaymentVerification

logger = logging.getLogger(__name__)


@dataclass
class PaidOrderResult:
    order_id: str
    kind: str
    created: bool
    items_saved: bool
    items_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_type": self.kind,
            "created": self.created,
            "items_saved": self.items_saved,
            "items_error": self.items_error,
        }


def infer_order_type(verification: PaymentVerification, kind: Optional[str] = None) -> str:
    if verification.order_type in ORDER_TABLES:
        return verification.order_type
    if kind in ORDER_TABLES:
        return kind
    return "restaurant"


def _insert_items(backend, kind: str, order_id: str, lines: List[CartLine]) -> None:
    items_table = ORDER_TABLES[kind][1]
    if kind == "grocery":
        grocery_item_ladder(order_id, lines).run(lambda rows: backend.insert_order_items(items_table, rows))
        return
    rows = [
        {"order_id": order_id, "menu_item_id": line.product_id, "qty": line.qty, "price_each": line.unit_price}
        for line in lines
        if line.product_id
    ]
    backend.insert_order_items(items_table, rows)


def _ensure_items(backend, kind: str, order_id: str, lines: List[CartLine]) -> Optional[str]:
    """Insert items unless the order already has some. Returns an error message on failure."""
    if not lines:
        return None
    try:
        if backend.order_has_items(ORDER_TABLES[kind][1], order_id):
            return None
        _insert_items(backend, kind, order_id, lines)
    except BackendError as e:
        logger.error(f"Items for paid order {order_id} not saved: {e.message}")
        return f"Order saved, but items not saved: {e.message}"
    return None


def _header(
    kind: str,
    verification: PaymentVerification,
    lines: List[CartLine],
    user_id: str,
    store_id: str,
    delivery: Optional[DeliveryDetails],
) -> Dict[str, Any]:
    total = as_amount(verification.amount)
    if kind == "grocery":
        return {
            "stripe_session_id": verification.session_id,
            "customer_user_id": user_id,
            "store_id": store_id,
            "status": "preparing",
            "total_amount": total,
            "currency": verification.currency,
            "email": verification.email,
        }

    d = delivery.stripped() if delivery else DeliveryDetails()
    return {
        "user_id": user_id,
        "restaurant_id": store_id,
        "status": "pending",
        "total_amount": total,
        "subtotal_amount": as_amount(subtotal_of(lines)),
        "total": total,
        "currency": verification.currency,
        "email": verification.email,
        "payment_method": "stripe",
        "stripe_session_id": verification.session_id,
        "customer_name": d.customer_name or None,
        "phone": d.phone or None,
        "address_line1": d.address_line1 or None,
        "address_line2": d.address_line2 or None,
        "landmark": d.landmark or None,
        "instructions": d.instructions or None,
    }


def record_paid_order(
    backend,
    verification: PaymentVerification,
    lines: List[CartLine],
    user_id: str,
    delivery: Optional[DeliveryDetails] = None,
    kind: Optional[str] = None,
) -> PaidOrderResult:
    """
    Record the order for a paid checkout session.

    Raises:
        PaymentError: session unpaid, or the cart cannot identify a store
        BackendError: the order header could not be written
    """
    if not verification.paid:
        raise PaymentError("Payment not completed.")

    kind = infer_order_type(verification, kind)
    order_table = ORDER_TABLES[kind][0]

    existing = backend.find_order_by_session(order_table, verification.session_id)
    if existing:
        items_error = _ensure_items(backend, kind, existing, lines)
        logger.info(f"Paid order {existing} already recorded for session {verification.session_id}")
        return PaidOrderResult(
            order_id=existing, kind=kind, created=False, items_saved=items_error is None, items_error=items_error
        )

    if kind == "grocery":
        store_id = verification.store_id or (str(lines[0].store_id) if lines else "")
        if not store_id:
            raise PaymentError(
                "Cart store_id not found. grocery_orders requires store_id. "
                "Please ensure grocery cart items include store_id."
            )
    else:
        store_id = verification.restaurant_id or (str(lines[0].store_id) if lines else "")
        if not store_id:
            raise PaymentError(
                "Restaurant cart restaurant_id not found. "
                "Please ensure restaurant cart items include restaurant_id."
            )
        if not lines:
            raise PaymentError("Restaurant cart is empty. Please return to cart and try again.")

    payload = _header(kind, verification, lines, user_id, store_id, delivery)
    order_id = paid_order_ladder(kind, payload).run(lambda p: backend.insert_order(order_table, p))

    items_error = _ensure_items(backend, kind, order_id, lines)
    logger.info(f"Paid {kind} order {order_id} recorded for session {verification.session_id}")
    return PaidOrderResult(
        order_id=order_id, kind=kind, created=True, items_saved=items_error is None, items_error=items_error
    )
