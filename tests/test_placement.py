"""Unit tests for checkout sessions and order placement."""

import pytest

from foodapp.checkout import (
    AddressBook,
    CartStore,
    CheckoutSession,
    DeliveryDetails,
    GeoPoint,
    InFlightGuard,
    MemoryStorage,
)
from foodapp.checkout.coupons import CouponValidator
from foodapp.checkout.errors import CheckoutBusyError


class StubGeocoder:
    def __init__(self, point=None):
        self.point = point
        self.queries = []

    def geocode(self, query):
        self.queries.append(query)
        return self.point


DELIVERY = DeliveryDetails(
    customer_name=" Asha ",
    phone="9999999999",
    address_line1="12 MG Road",
    address_line2="Flat 4",
    landmark="Near Park",
    instructions="Ring twice",
)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session_for(storage, backend, clock):
    def build(kind="restaurant", geocoder=None, guard=None):
        cart = CartStore(storage, kind=kind)
        validator = CouponValidator(backend, clock=clock)
        return CheckoutSession(
            cart,
            backend,
            geocoder=geocoder,
            validator=validator,
            address_book=AddressBook(storage),
            guard=guard or InFlightGuard(),
            payment_method="cod",
        )
    return build


class TestInFlightGuard:
    """Tests for InFlightGuard."""

    def test_hold_blocks_same_key(self):
        guard = InFlightGuard()
        with guard.hold("u1"):
            assert guard.busy("u1")
            assert not guard.busy("u2")
            with pytest.raises(CheckoutBusyError):
                with guard.hold("u1"):
                    pass
        assert not guard.busy("u1")

    def test_released_after_error(self):
        guard = InFlightGuard()
        with pytest.raises(RuntimeError):
            with guard.hold("u1"):
                raise RuntimeError("boom")
        assert not guard.busy("u1")


class TestCouponState:
    """Tests for applying and re-checking coupons in a session."""

    def test_apply_sets_discount_and_info(self, session_for):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300)
        check = session.apply_coupon("save50", "u1")
        assert check.ok
        assert session.discount == 50
        assert session.info == "Coupon SAVE50 applied."
        assert session.error == ""
        assert session.breakdown().discount == 50

    def test_failed_apply_clears_coupon(self, session_for):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300)
        session.apply_coupon("SAVE50")
        session.apply_coupon("NOPE")
        assert session.coupon is None
        assert session.discount == 0
        assert session.error == "Invalid coupon code."
        assert session.info == ""

    def test_grocery_rejects_coupons(self, session_for):
        session = session_for("grocery")
        session.cart.add("g-milk", "g1", unit_price=60)
        check = session.apply_coupon("SAVE50")
        assert not check.ok
        assert check.reason == "Coupons are currently available only for restaurant orders."

    def test_cart_edit_recomputes_percent_discount(self, session_for):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=100)
        session.apply_coupon("TEN")
        assert session.discount == 10
        session.cart.add("m2", "r1", unit_price=150)
        assert session.discount == 25
        session.cart.add("m3", "r1", unit_price=400)
        assert session.discount == 30  # capped
        assert session.breakdown().discount == 30

    def test_cart_edit_drops_coupon_below_minimum(self, session_for, backend):
        """Lowering the subtotal under the minimum clears the coupon on its own."""
        backend.rows("coupons")[0]["min_order_amount"] = 500
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300, qty=2)
        assert session.apply_coupon("SAVE50", "u1").ok

        session.cart.set_qty("m1", 1)

        assert session.coupon is None
        assert session.discount == 0
        assert session.breakdown().discount == 0
        assert session.error == "Minimum order ₹500 required for this coupon."

    def test_external_cart_write_triggers_recheck(self, session_for, storage, backend):
        backend.rows("coupons")[0]["min_order_amount"] = 500
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300, qty=2)
        session.apply_coupon("SAVE50", "u1")

        other = CartStore(storage, kind="restaurant")
        other.set_qty("m1", 1)

        assert session.coupon is None

    def test_unchanged_subtotal_skips_recheck(self, session_for, backend):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300)
        session.apply_coupon("SAVE50", "u1")
        calls = backend.calls.count("find_coupon")
        session.cart.load()
        assert backend.calls.count("find_coupon") == calls
        assert session.coupon.code == "SAVE50"

    def test_explicit_recheck(self, session_for):
        session = session_for()
        assert session.recheck_coupon() is None
        session.cart.add("m1", "r1", unit_price=300)
        session.apply_coupon("SAVE50", "u1")
        check = session.recheck_coupon()
        assert check.ok
        assert session.discount == 50

    def test_lookup_failure_during_recheck_clears_coupon(self, session_for, backend):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300)
        session.apply_coupon("SAVE50", "u1")
        backend.fail("find_coupon", "network down")
        session.cart.add("m2", "r1", unit_price=100)
        assert session.coupon is None
        assert session.error == "network down"

    def test_closed_session_stops_rechecking(self, session_for, backend):
        backend.rows("coupons")[0]["min_order_amount"] = 500
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300, qty=2)
        session.apply_coupon("SAVE50", "u1")
        session.close()
        session.cart.set_qty("m1", 1)
        assert session.coupon.code == "SAVE50"

    def test_set_tip_ignores_garbage(self, session_for):
        session = session_for()
        session.set_tip("abc")
        assert session.tip == 0
        session.set_tip(-5)
        assert session.tip == 0
        session.set_tip("20")
        assert session.tip == 20


class TestPreconditions:
    """Tests for the checks run before anything is written."""

    @pytest.mark.parametrize("user_id,delivery,message", [
        (None, DELIVERY, "Please login or sign up to place an order."),
        ("u1", DeliveryDetails(phone="1", address_line1="a"), "Please enter customer name."),
        ("u1", DeliveryDetails(customer_name="A", address_line1="a"), "Please enter phone."),
        ("u1", DeliveryDetails(customer_name="A", phone="1", address_line1="   "), "Please enter address line 1."),
    ])
    def test_missing_fields(self, session_for, backend, user_id, delivery, message):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=100)
        result = session.place_order(user_id, delivery)
        assert not result.ok
        assert result.error == message
        assert session.error == message
        assert backend.rows("orders") == []

    def test_empty_cart(self, session_for):
        result = session_for().place_order("u1", DELIVERY)
        assert result.error == "Cart is empty."

    def test_reentrant_call_is_busy(self, session_for):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=100)
        session.placing = True
        result = session.place_order("u1", DELIVERY)
        assert result.busy
        assert result.error == "Order is already being placed."

    def test_concurrent_user_is_busy(self, session_for, backend):
        guard = InFlightGuard()
        session = session_for(guard=guard)
        session.cart.add("m1", "r1", unit_price=100)
        with guard.hold("u1"):
            result = session.place_order("u1", DELIVERY)
        assert result.busy
        assert backend.rows("orders") == []
        assert not session.placing


class TestRestaurantOrders:
    """Tests for committing restaurant orders."""

    def test_full_commit(self, session_for, backend, storage):
        geocoder = StubGeocoder(GeoPoint(lat=19.1, lng=72.9))
        session = session_for(geocoder=geocoder)
        session.cart.add("m1", "r1", name="Dosa", unit_price=150, qty=2)
        session.apply_coupon("SAVE50", "u1")
        session.set_tip(20)

        result = session.place_order("u1", DELIVERY, save_address=True)

        assert result.ok, result.error
        order = backend.rows("orders")[0]
        assert order["id"] == result.order_id
        assert order["customer_name"] == "Asha"
        assert order["subtotal_amount"] == 300
        assert order["discount_amount"] == 50
        # 300 + 25 delivery + 15 tax + 20 tip - 50
        assert order["total_amount"] == 310
        assert order["total"] == 310
        assert order["coupon_code"] == "SAVE50"
        assert order["customer_lat"] == 19.1
        assert order["restaurant_lat"] == 19.07
        assert order["instructions"] == "Ring twice (coupon:SAVE50 | tip:20 | deliveryFee:25 | gst:15 | pay:cod)"
        assert geocoder.queries == ["12 MG Road, Flat 4, Near Park"]

        items = backend.rows("order_items")
        assert items == [
            {"order_id": result.order_id, "menu_item_id": "m1", "qty": 2, "price_each": 150, "id": items[0]["id"]}
        ]
        redemption = backend.rows("coupon_redemptions")[0]
        assert redemption["order_id"] == result.order_id
        assert redemption["coupon_code"] == "SAVE50"

        assert result.info == "✅ Order placed successfully! (Pickup + drop locations saved)"
        assert session.cart.read() == []
        assert session.coupon is None
        assert session.tip == 0
        assert AddressBook(storage).load().customer_name == "Asha"

    def test_missing_locations_are_noted(self, session_for, backend):
        backend.tables["restaurants"] = []
        session = session_for(geocoder=StubGeocoder(None))
        session.cart.add("m1", "r1", unit_price=100)
        result = session.place_order("u1", DELIVERY)
        assert result.ok
        assert result.info == (
            "✅ Order placed successfully! (Note: Address geocode failed (drop location missing)"
            " • Restaurant location missing (pickup location missing))"
        )
        assert backend.rows("orders")[0]["customer_lat"] is None

    def test_coupon_revalidated_at_commit(self, session_for, backend):
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300)
        session.apply_coupon("SAVE50", "u1")
        backend.rows("coupons")[0]["is_active"] = False

        result = session.place_order("u1", DELIVERY)

        assert not result.ok
        assert result.error == "This coupon is not active."
        assert session.coupon is None
        assert backend.rows("orders") == []
        assert session.cart.read() != []

    def test_header_failure_keeps_cart(self, session_for, backend):
        backend.fail("insert_order", "permission denied for table orders")
        session = session_for()
        session.cart.add("m1", "r1", unit_price=100)

        result = session.place_order("u1", DELIVERY)

        assert not result.ok
        assert result.step == "order"
        assert result.error == "permission denied for table orders"
        assert session.cart.read() != []
        assert not session.placing

    def test_items_failure_reports_orphan_order(self, session_for, backend):
        backend.fail("insert_order_items", "items rejected")
        session = session_for()
        session.cart.add("m1", "r1", unit_price=100)

        result = session.place_order("u1", DELIVERY)

        assert not result.ok
        assert result.step == "items"
        order_id = backend.rows("orders")[0]["id"]
        assert result.order_id == order_id
        assert result.error == f"Order {order_id} saved, but items not saved: items rejected"
        assert session.cart.read() != []

    def test_redemption_failure_is_not_fatal(self, session_for, backend):
        backend.fail("insert_redemption", "redemptions table missing")
        session = session_for()
        session.cart.add("m1", "r1", unit_price=300)
        session.apply_coupon("SAVE50", "u1")

        result = session.place_order("u1", DELIVERY)

        assert result.ok
        assert result.redemption_error == "redemptions table missing"
        assert session.cart.read() == []


class TestGroceryOrders:
    """Tests for committing grocery orders."""

    def test_commit_without_discount(self, session_for, backend):
        session = session_for("grocery", geocoder=StubGeocoder(GeoPoint(lat=18.5, lng=73.8)))
        session.cart.add("g-milk", "g1", name="Milk", unit_price=60, qty=2)
        session.set_tip(10)

        result = session.place_order("u1", DELIVERY)

        assert result.ok, result.error
        assert result.info == "✅ Grocery order placed successfully!"
        order = backend.rows("grocery_orders")[0]
        assert order["customer_user_id"] == "u1"
        assert order["store_id"] == "g1"
        assert order["delivery_address"] == "12 MG Road, Flat 4, Near Park"
        # 120 + 25 delivery + 6 tax + 10 tip
        assert order["total_amount"] == 161
        item = backend.rows("grocery_order_items")[0]
        assert item["grocery_item_id"] == "g-milk"
        assert item["price_each"] == 60
        assert session.cart.read() == []

    def test_schema_drift_is_tolerated(self, session_for, backend):
        backend.reject_columns("grocery_orders", "store_id")
        backend.reject_columns("grocery_order_items", "grocery_item_id")
        session = session_for("grocery")
        session.cart.add("g-milk", "g1", name="Milk", unit_price=60)

        result = session.place_order("u1", DELIVERY)

        assert result.ok, result.error
        assert "store_id" not in backend.rows("grocery_orders")[0]
        assert backend.rows("grocery_order_items")[0]["item_id"] == "g-milk"
        assert result.notes == ["Address geocode failed (drop location missing)"]

    def test_items_failure_after_ladder(self, session_for, backend):
        backend.fail("insert_order_items", "permission denied")
        session = session_for("grocery")
        session.cart.add("g-milk", "g1", unit_price=60)

        result = session.place_order("u1", DELIVERY)

        assert result.step == "items"
        assert result.order_id == backend.rows("grocery_orders")[0]["id"]
