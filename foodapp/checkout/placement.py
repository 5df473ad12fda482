"""
Checkout session and order commit

CheckoutSession carries the state of one checkout screen (applied coupon,
tip, messages) and commits the order in a fixed order of steps:

    re-validate coupon -> resolve coordinates -> order header -> order items
    -> redemption record -> clear cart

Header and items are separate writes. When the items write fails after the
header was stored, the order is left without items and the error carries its
id; nothing is rolled back.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .addresses import AddressBook, DeliveryDetails
from .cart_store import CartLine, CartStore, cart_subtotal
from .config import CheckoutConfig
from .coupons import CouponCheck, CouponSummary, CouponValidator
from .errors import BackendError, CheckoutBusyError, OrderWriteError
from .geocoding import GeoPoint, Geocoder
from .ladder import grocery_item_ladder, grocery_order_ladder
from .money import as_amount, to_number
from .totals import PriceBreakdown, compose_totals

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("card", "cod", "upi")


class InFlightGuard:
    """Advisory single-flight per key (user id) within this process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active = set()

    def busy(self, key: Any) -> bool:
        with self._lock:
            return key in self._active

    @contextmanager
    def hold(self, key: Any):
        with self._lock:
            if key in self._active:
                raise CheckoutBusyError(f"Order placement already in flight for {key}")
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)


_inflight = InFlightGuard()


def get_inflight_guard() -> InFlightGuard:
    return _inflight


@dataclass
class PlaceOrderResult:
    """Outcome of a placement attempt."""

    ok: bool
    error: str = ""
    info: str = ""
    order_id: Optional[str] = None
    breakdown: Optional[PriceBreakdown] = None
    coupon: Optional[CouponSummary] = None
    notes: List[str] = field(default_factory=list)
    redemption_error: Optional[str] = None
    step: Optional[str] = None
    busy: bool = False

    @classmethod
    def fail(cls, error: str, order_id: Optional[str] = None, step: Optional[str] = None) -> "PlaceOrderResult":
        return cls(ok=False, error=error, order_id=order_id, step=step)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error or None,
            "info": self.info or None,
            "order_id": self.order_id,
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "coupon": self.coupon.to_dict() if self.coupon else None,
            "notes": list(self.notes),
            "redemption_error": self.redemption_error,
            "step": self.step,
        }


def _fmt(value: Any) -> str:
    return str(as_amount(value))


def _or_none(value: str) -> Optional[str]:
    return value or None


class CheckoutSession:
    """State and actions of one checkout screen."""

    def __init__(
        self,
        cart: CartStore,
        backend,
        geocoder: Optional[Geocoder] = None,
        validator: Optional[CouponValidator] = None,
        config: Optional[CheckoutConfig] = None,
        address_book: Optional[AddressBook] = None,
        guard: Optional[InFlightGuard] = None,
        payment_method: str = "card",
        user_id: Optional[str] = None,
    ):
        self.cart = cart
        self.kind = cart.kind
        self.backend = backend
        self.config = config or cart.config
        self.geocoder = geocoder
        self.validator = validator or CouponValidator(backend, currency_symbol=self.config.currency_symbol)
        self.address_book = address_book
        self.guard = guard or get_inflight_guard()

        self.coupon: Optional[CouponSummary] = None
        self.discount: float = 0
        self.tip: float = 0
        self.payment_method = payment_method
        self.error = ""
        self.info = ""
        self.placing = False
        self.user_id = user_id

        # Re-validate an applied coupon whenever the subtotal moves
        self._seen_subtotal = cart_subtotal(self.lines())
        self._unsubscribe_cart = self.cart.subscribe(self._on_cart_change)

    def close(self) -> None:
        self._unsubscribe_cart()

    def _on_cart_change(self, lines: List[CartLine]) -> None:
        subtotal = cart_subtotal(lines)
        if subtotal == self._seen_subtotal:
            return
        self._seen_subtotal = subtotal
        if self.coupon:
            self.recheck_coupon(self.user_id)

    # --- messages (one at a time, last wins) ---

    def _set_error(self, message: str) -> None:
        self.error = message
        self.info = ""

    def _set_info(self, message: str) -> None:
        self.info = message
        self.error = ""

    # --- pricing ---

    def lines(self) -> List[CartLine]:
        return self.cart.read()

    def subtotal(self) -> float:
        return self.breakdown().subtotal

    def breakdown(self) -> PriceBreakdown:
        discount = max(0, self.discount) if self.coupon else 0
        return compose_totals(self.lines(), self.tip, discount, self.config)

    def set_tip(self, amount: Any) -> None:
        self.tip = max(0.0, to_number(amount, 0.0))

    # --- coupons ---

    def apply_coupon(self, code: Any, user_id: Optional[str] = None) -> CouponCheck:
        """Advisory validation when the user applies a code."""
        if user_id:
            self.user_id = user_id
        if self.kind != "restaurant":
            check = CouponCheck.fail("Coupons are currently available only for restaurant orders.")
        else:
            check = self.validator.validate(code, self.subtotal(), user_id)

        if check.ok:
            self.coupon = check.coupon
            self.discount = check.discount
            self._set_info(f"Coupon {check.coupon.code} applied.")
        else:
            self._clear_coupon()
            self._set_error(check.reason)
        return check

    def recheck_coupon(self, user_id: Optional[str] = None) -> Optional[CouponCheck]:
        """Re-validate an applied coupon; runs on its own when the subtotal changes."""
        if not self.coupon:
            return None
        try:
            check = self.validator.validate(self.coupon.code, self.subtotal(), user_id or self.user_id)
        except Exception as e:
            logger.warning(f"Coupon re-check failed: {e}")
            return None
        if check.ok:
            self.coupon = check.coupon
            self.discount = check.discount
        else:
            self._clear_coupon()
            self._set_error(check.reason)
        return check

    def remove_coupon(self) -> None:
        self._clear_coupon()

    def _clear_coupon(self) -> None:
        self.coupon = None
        self.discount = 0

    # --- placement ---

    def _precondition_error(self, user_id: Optional[str], lines: List[CartLine], delivery: DeliveryDetails) -> str:
        if not user_id:
            return "Please login or sign up to place an order."
        if not lines:
            return "Cart is empty."
        if not delivery.customer_name:
            return "Please enter customer name."
        if not delivery.phone:
            return "Please enter phone."
        if not delivery.address_line1:
            return "Please enter address line 1."
        store_id = lines[0].store_id
        if not store_id:
            return "Cart items missing store id. Please re-add items."
        if any(line.store_id != store_id for line in lines):
            return "Please order from one store at a time."
        return ""

    def place_order(
        self,
        user_id: Optional[str],
        delivery: DeliveryDetails,
        save_address: bool = False,
    ) -> PlaceOrderResult:
        """
        Validate and commit the current cart as an order.

        Never raises for business or collaborator failures; the result carries
        the user-facing message and the session's error/info fields mirror it.
        """
        if self.placing:
            return PlaceOrderResult(ok=False, error="Order is already being placed.", busy=True)

        self.error = ""
        self.info = ""
        delivery = delivery.stripped()
        lines = self.lines()

        problem = self._precondition_error(user_id, lines, delivery)
        if problem:
            self._set_error(problem)
            return PlaceOrderResult.fail(problem)

        self.placing = True
        try:
            with self.guard.hold(user_id):
                if save_address and self.address_book is not None:
                    self.address_book.save(delivery)
                if self.kind == "grocery":
                    result = self._commit_grocery(user_id, lines, delivery)
                else:
                    result = self._commit_restaurant(user_id, lines, delivery)
        except CheckoutBusyError:
            result = PlaceOrderResult(ok=False, error="Order is already being placed.", busy=True)
        except OrderWriteError as e:
            logger.error(f"Order commit failed at {e.step}: {e.message}")
            result = PlaceOrderResult.fail(e.message, order_id=e.order_id, step=e.step)
        finally:
            self.placing = False

        if result.ok:
            self._set_info(result.info)
        else:
            self._set_error(result.error)
        return result

    def _resolve_drop(self, address: str) -> Optional[GeoPoint]:
        if self.geocoder is None:
            return None
        try:
            return self.geocoder.geocode(address)
        except Exception as e:
            logger.warning(f"Geocoding failed for order address: {e}")
            return None

    def _resolve_pickup(self, store_id: Any) -> Optional[GeoPoint]:
        try:
            return self.backend.store_coordinates(self.kind, store_id)
        except Exception as e:
            logger.warning(f"Store coordinates unavailable for {store_id}: {e}")
            return None

    def _commit_restaurant(self, user_id: str, lines: List[CartLine], delivery: DeliveryDetails) -> PlaceOrderResult:
        store_id = lines[0].store_id
        subtotal = compose_totals(lines, config=self.config).subtotal

        coupon: Optional[CouponSummary] = None
        discount: float = 0
        if self.coupon:
            check = self.validator.validate(self.coupon.code, subtotal, user_id)
            if not check.ok:
                self._clear_coupon()
                return PlaceOrderResult.fail(check.reason or "Coupon invalid. Please apply again.")
            coupon, discount = check.coupon, check.discount
            self.coupon, self.discount = coupon, discount

        drop = self._resolve_drop(delivery.full_address())
        pickup = self._resolve_pickup(store_id)
        totals = compose_totals(lines, self.tip, discount, self.config)

        meta = " | ".join(
            part
            for part in (
                f"coupon:{coupon.code}" if coupon else "",
                f"tip:{_fmt(totals.tip)}" if totals.tip else "",
                f"deliveryFee:{_fmt(totals.delivery_fee)}" if totals.delivery_fee else "",
                f"gst:{_fmt(totals.tax)}" if totals.tax else "",
                f"pay:{self.payment_method}" if self.payment_method else "",
            )
            if part
        )
        instructions = " ".join(p for p in (delivery.instructions, f"({meta})" if meta else "") if p)

        payload = {
            "user_id": user_id,
            "restaurant_id": store_id,
            "status": "pending",
            "total": totals.total,
            "subtotal_amount": totals.subtotal,
            "discount_amount": totals.discount,
            "total_amount": totals.total,
            "coupon_id": coupon.id if coupon else None,
            "coupon_code": coupon.code if coupon else None,
            "customer_name": delivery.customer_name,
            "phone": delivery.phone,
            "address_line1": delivery.address_line1,
            "address_line2": _or_none(delivery.address_line2),
            "landmark": _or_none(delivery.landmark),
            "instructions": _or_none(instructions),
            "customer_lat": drop.lat if drop else None,
            "customer_lng": drop.lng if drop else None,
            "restaurant_lat": pickup.lat if pickup else None,
            "restaurant_lng": pickup.lng if pickup else None,
        }

        try:
            order_id = self.backend.insert_order("orders", payload)
        except BackendError as e:
            raise OrderWriteError("order", e.message) from e

        rows = [
            {
                "order_id": order_id,
                "menu_item_id": line.product_id,
                "qty": line.qty,
                "price_each": line.unit_price,
            }
            for line in lines
        ]
        try:
            self.backend.insert_order_items("order_items", rows)
        except BackendError as e:
            raise OrderWriteError(
                "items", f"Order {order_id} saved, but items not saved: {e.message}", order_id=order_id
            ) from e

        redemption_error = None
        if coupon and coupon.id:
            redemption_error = self._record_redemption(coupon, user_id, order_id)

        logger.info(f"Restaurant order {order_id} placed for user {user_id} (total {totals.total})")

        self._clear_coupon()
        self.tip = 0
        self.cart.clear()

        notes = []
        if drop is None:
            notes.append("Address geocode failed (drop location missing)")
        if pickup is None:
            notes.append("Restaurant location missing (pickup location missing)")
        if notes:
            info = f"✅ Order placed successfully! (Note: {' • '.join(notes)})"
        else:
            info = "✅ Order placed successfully! (Pickup + drop locations saved)"

        return PlaceOrderResult(
            ok=True,
            info=info,
            order_id=order_id,
            breakdown=totals,
            coupon=coupon,
            notes=notes,
            redemption_error=redemption_error,
        )

    def _record_redemption(self, coupon: CouponSummary, user_id: str, order_id: str) -> Optional[str]:
        try:
            self.backend.insert_redemption(
                {
                    "coupon_id": coupon.id,
                    "user_id": user_id,
                    "order_id": order_id,
                    "coupon_code": coupon.code,
                }
            )
        except Exception as e:
            logger.warning(f"Redemption record failed for order {order_id}: {e}")
            return str(e)
        return None

    def _commit_grocery(self, user_id: str, lines: List[CartLine], delivery: DeliveryDetails) -> PlaceOrderResult:
        store_id = lines[0].store_id
        full_address = delivery.full_address()
        drop = self._resolve_drop(full_address)
        totals = compose_totals(lines, self.tip, 0, self.config)

        payload = {
            "customer_user_id": user_id,
            "store_id": store_id,
            "customer_name": delivery.customer_name,
            "customer_phone": delivery.phone,
            "delivery_address": full_address,
            "instructions": _or_none(delivery.instructions),
            "status": "pending",
            "total_amount": totals.total,
            "customer_lat": drop.lat if drop else None,
            "customer_lng": drop.lng if drop else None,
        }

        try:
            order_id = grocery_order_ladder(payload).run(
                lambda p: self.backend.insert_order("grocery_orders", p)
            )
        except BackendError as e:
            raise OrderWriteError("order", e.message) from e

        try:
            grocery_item_ladder(order_id, lines).run(
                lambda rows: self.backend.insert_order_items("grocery_order_items", rows)
            )
        except BackendError as e:
            raise OrderWriteError(
                "items", f"Order {order_id} saved, but items not saved: {e.message}", order_id=order_id
            ) from e

        logger.info(f"Grocery order {order_id} placed for user {user_id} (total {totals.total})")

        self.cart.clear()
        self.tip = 0

        notes = [] if drop else ["Address geocode failed (drop location missing)"]
        return PlaceOrderResult(
            ok=True,
            info="✅ Grocery order placed successfully!",
            order_id=order_id,
            breakdown=totals,
            notes=notes,
        )
