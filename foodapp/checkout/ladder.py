"""
Schema-tolerant writes

Some order tables have drifted between deployments, so a write is attempted
with the fullest payload first and retried with reduced payloads while the
store answers with a missing-column error. Any other error stops the ladder.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .errors import BackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_missing_column_error(error: Any) -> bool:
    """True for 'column ... does not exist' and PostgREST schema-cache misses."""
    message = str(getattr(error, "message", None) or error or "").lower()
    code = str(getattr(error, "code", None) or "").upper()
    if "column" in message and "does not exist" in message:
        return True
    if code == "PGRST204":
        return True
    return "could not find the" in message and "column" in message


@dataclass
class Rung:
    label: str
    payload: Any


class WriteLadder:
    """Ordered payload candidates for one logical write."""

    def __init__(self, name: str, rungs: Sequence[Rung]):
        if not rungs:
            raise ValueError(f"Write ladder {name} needs at least one rung")
        self.name = name
        self.rungs: List[Rung] = list(rungs)
        self.used: Optional[str] = None

    def run(self, write: Callable[[Any], T]) -> T:
        """
        Call write(payload) for each rung in order.

        Returns the first successful result. Raises the error of the first
        non-schema failure, or the last error once every rung is exhausted.
        """
        last_error: Optional[BackendError] = None
        for rung in self.rungs:
            try:
                result = write(rung.payload)
            except BackendError as e:
                if not is_missing_column_error(e):
                    raise
                logger.warning(f"{self.name}: rung '{rung.label}' rejected ({e.message}), trying next")
                last_error = e
                continue
            self.used = rung.label
            if rung is not self.rungs[0]:
                logger.info(f"{self.name}: written with rung '{rung.label}'")
            return result
        raise last_error


def _without(payload: Dict[str, Any], *names: str) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in names}


def _only(payload: Dict[str, Any], *names: str) -> Dict[str, Any]:
    return {k: payload[k] for k in names if k in payload}


def grocery_order_ladder(payload: Dict[str, Any]) -> WriteLadder:
    """Grocery order header: full, then without store_id, then without coordinates."""
    no_store = _without(payload, "store_id")
    return WriteLadder(
        "grocery_orders",
        [
            Rung("full", payload),
            Rung("without store_id", no_store),
            Rung("without coordinates", _without(no_store, "customer_lat", "customer_lng")),
        ],
    )


def grocery_item_ladder(order_id: Any, lines: Sequence[Any]) -> WriteLadder:
    """Grocery order items in the four row shapes seen across schemas."""
    return WriteLadder(
        "grocery_order_items",
        [
            Rung(
                "grocery_item_id/price_each",
                [
                    {
                        "order_id": order_id,
                        "grocery_item_id": line.product_id,
                        "qty": line.qty,
                        "price_each": line.unit_price,
                        "item_name": line.name,
                    }
                    for line in lines
                ],
            ),
            Rung(
                "item_id/price",
                [
                    {
                        "order_id": order_id,
                        "item_id": line.product_id,
                        "qty": line.qty,
                        "price": line.unit_price,
                        "name": line.name,
                    }
                    for line in lines
                ],
            ),
            Rung(
                "item_id/qty",
                [{"order_id": order_id, "item_id": line.product_id, "qty": line.qty} for line in lines],
            ),
            Rung(
                "grocery_item_id/quantity",
                [
                    {"order_id": order_id, "grocery_item_id": line.product_id, "quantity": line.qty}
                    for line in lines
                ],
            ),
        ],
    )


def paid_order_ladder(kind: str, payload: Dict[str, Any]) -> WriteLadder:
    """Header ladder for orders recorded after a confirmed card payment."""
    if kind == "grocery":
        return WriteLadder(
            "grocery_orders (paid)",
            [
                Rung("full", payload),
                Rung("without currency/email", _without(payload, "currency", "email")),
                Rung(
                    "without status",
                    _only(payload, "stripe_session_id", "customer_user_id", "store_id", "total_amount"),
                ),
                Rung("minimal", _only(payload, "stripe_session_id", "customer_user_id", "store_id")),
            ],
        )
    return WriteLadder(
        "orders (paid)",
        [
            Rung("full", payload),
            Rung("without currency/email", _without(payload, "currency", "email")),
            Rung("without payment_method", _without(payload, "currency", "email", "payment_method")),
            Rung(
                "amounts only",
                _only(
                    payload,
                    "stripe_session_id",
                    "user_id",
                    "restaurant_id",
                    "status",
                    "total_amount",
                    "subtotal_amount",
                ),
            ),
            Rung("legacy total", _only(payload, "user_id", "restaurant_id", "status", "total")),
        ],
    )
