"""API tests for the checkout, admin and payment routes."""

import pytest
from fastapi.testclient import TestClient

from foodapp.backend import reset_backend, set_backend
from foodapp.checkout import GeoPoint, GeocodeUpstreamError, get_inflight_guard
from foodapp.main import app
from foodapp.payments import FakeGateway, reset_gateway, set_gateway
from foodapp.routes import limiter
from foodapp.routes.checkout import geocoder_dep
from foodapp.routes.deps import optional_user_dep, token_dep

USER = {"user_id": "u1", "email": "asha@example.com", "payload": {}}
ADMIN = {"user_id": "u-admin", "email": "admin@example.com", "payload": {}}

LINES = [{"menu_item_id": "m1", "restaurant_id": "r1", "name": "Dosa", "price_each": 150, "qty": 2}]
DELIVERY = {"customer_name": "Asha", "phone": "9999999999", "address_line1": "12 MG Road"}


class StubGeocoder:
    def __init__(self, point=None, error=None):
        self.point = point
        self.error = error

    def search(self, query):
        if self.error:
            raise self.error
        return self.point

    def geocode(self, query):
        return self.point


@pytest.fixture
def api(backend):
    """Test client wired to the in-memory backend, a fake gateway and a signed-in user."""
    limiter.enabled = False
    set_backend(backend)
    gateway = FakeGateway()
    set_gateway(gateway)
    app.dependency_overrides[token_dep] = lambda: USER
    app.dependency_overrides[optional_user_dep] = lambda: USER
    app.dependency_overrides[geocoder_dep] = lambda: StubGeocoder(GeoPoint(lat=19.1, lng=72.9, display_name="Mumbai"))
    client = TestClient(app)
    client.backend = backend
    client.gateway = gateway
    yield client
    app.dependency_overrides.clear()
    reset_backend()
    reset_gateway()
    limiter.enabled = True


def sign_in(user):
    app.dependency_overrides[token_dep] = lambda: user


class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, api):
        assert api.get("/health").json() == {"status": "ok"}

    def test_healthz_reports_backend(self, api):
        response = api.get("/healthz")
        body = response.json()
        assert body["checks"]["backend_connected"] is True
        assert body["checks"]["coupon_count"] == 2

    def test_healthz_degraded_when_backend_fails(self, api):
        api.backend.fail("count_coupons")
        response = api.get("/healthz")
        assert response.status_code == 503
        assert response.json()["checks"]["backend_connected"] is False


class TestCheckoutRoutes:
    """Tests for /api checkout endpoints."""

    def test_validate_coupon(self, api):
        response = api.post("/api/coupons/validate", json={"code": "save50", "subtotal": 300})
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["discount"] == 50
        assert body["coupon"]["code"] == "SAVE50"

    def test_validate_coupon_rejection_is_200(self, api):
        response = api.post("/api/coupons/validate", json={"code": "NOPE", "subtotal": 300})
        assert response.status_code == 200
        assert response.json() == {"ok": False, "reason": "Invalid coupon code."}

    def test_quote(self, api):
        lines = LINES + [{"menu_item_id": "m9", "restaurant_id": "r2", "price_each": 10, "qty": 1}]
        response = api.post("/api/cart/quote", json={"lines": lines, "tip": 10, "coupon_code": "SAVE50"})
        body = response.json()
        assert [line["menu_item_id"] for line in body["lines"]] == ["m1"]
        assert body["breakdown"] == {
            "subtotal": 300, "delivery_fee": 25, "tax": 15, "tip": 10, "discount": 50, "total": 300,
        }
        assert body["coupon"]["code"] == "SAVE50"
        assert body["coupon_error"] is None

    def test_quote_reports_coupon_error(self, api):
        response = api.post("/api/cart/quote", json={"lines": LINES, "coupon_code": "NOPE"})
        body = response.json()
        assert body["coupon"] is None
        assert body["coupon_error"] == "Invalid coupon code."

    def test_quote_rejects_unknown_kind(self, api):
        assert api.post("/api/cart/quote", json={"kind": "pharmacy"}).status_code == 400

    def test_place_order(self, api):
        response = api.post(
            "/api/orders",
            json={"lines": LINES, "delivery": DELIVERY, "coupon_code": "SAVE50", "payment_method": "cod"},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["ok"] is True
        assert body["breakdown"]["total"] == 290
        order = api.backend.rows("orders")[0]
        assert order["id"] == body["order_id"]
        assert order["user_id"] == "u1"

    def test_place_order_requires_auth(self, api):
        del app.dependency_overrides[token_dep]
        response = api.post("/api/orders", json={"lines": LINES, "delivery": DELIVERY})
        assert response.status_code == 401

    def test_place_order_validation_error(self, api):
        response = api.post("/api/orders", json={"lines": LINES, "delivery": {"customer_name": "Asha"}})
        assert response.status_code == 400
        assert response.json()["detail"] == "Please enter phone."

    def test_place_order_bad_coupon(self, api):
        response = api.post("/api/orders", json={"lines": LINES, "delivery": DELIVERY, "coupon_code": "NOPE"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid coupon code."
        assert api.backend.rows("orders") == []

    def test_place_order_bad_payment_method(self, api):
        response = api.post("/api/orders", json={"lines": LINES, "delivery": DELIVERY, "payment_method": "cash"})
        assert response.status_code == 400

    def test_place_order_write_failure_is_500(self, api):
        api.backend.fail("insert_order", "permission denied for table orders")
        response = api.post("/api/orders", json={"lines": LINES, "delivery": DELIVERY})
        assert response.status_code == 500
        assert response.json()["detail"] == "permission denied for table orders"

    def test_place_order_busy(self, api):
        with get_inflight_guard().hold("u1"):
            response = api.post("/api/orders", json={"lines": LINES, "delivery": DELIVERY})
        assert response.status_code == 409

    def test_geocode(self, api):
        response = api.post("/api/geocode", json={"q": "Mumbai"})
        assert response.json() == {"ok": True, "lat": 19.1, "lng": 72.9, "display_name": "Mumbai"}

    def test_geocode_missing_query(self, api):
        response = api.post("/api/geocode", json={"q": "  "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing address query"

    def test_geocode_not_found(self, api):
        app.dependency_overrides[geocoder_dep] = lambda: StubGeocoder(None)
        assert api.post("/api/geocode", json={"q": "nowhere"}).status_code == 404

    def test_geocode_upstream_failure(self, api):
        app.dependency_overrides[geocoder_dep] = lambda: StubGeocoder(error=GeocodeUpstreamError("Geocode failed (503)"))
        response = api.post("/api/geocode", json={"q": "Mumbai"})
        assert response.status_code == 502


class TestAdminRoutes:
    """Tests for /api/admin endpoints."""

    @pytest.fixture
    def admin_api(self, api):
        api.backend.rows("profiles").append({"user_id": "u-admin", "role": " Admin "})
        sign_in(ADMIN)
        return api

    def test_non_admin_forbidden(self, api):
        api.backend.rows("profiles").append({"user_id": "u1", "role": "customer"})
        response = api.get("/api/admin/coupons")
        assert response.status_code == 403
        assert response.json()["detail"] == 'Not authorized. Your role is "customer".'

    def test_missing_profile_forbidden(self, api):
        response = api.get("/api/admin/coupons")
        assert response.status_code == 403
        assert response.json()["detail"] == "Profile not found for this user."

    def test_profile_keyed_by_id(self, api):
        api.backend.rows("profiles").append({"id": "u1", "role": "admin"})
        assert api.get("/api/admin/coupons").status_code == 200

    def test_profile_read_failure(self, api):
        api.backend.fail("get_profile_role", "permission denied for table profiles")
        response = api.get("/api/admin/coupons")
        assert response.status_code == 500
        assert response.json()["detail"] == "Profile read failed. Check profiles SELECT policy."

    def test_coupon_crud(self, admin_api):
        created = admin_api.post("/api/admin/coupons", json={"code": "fresh", "type": "percent", "value": 20})
        assert created.status_code == 201
        coupon_id = created.json()["coupon"]["id"]

        patched = admin_api.patch(f"/api/admin/coupons/{coupon_id}", json={"is_active": False})
        assert patched.json() == {"id": coupon_id, "updated": {"is_active": False}}

        codes = [c["code"] for c in admin_api.get("/api/admin/coupons").json()["coupons"]]
        assert "FRESH" in codes

        deleted = admin_api.delete(f"/api/admin/coupons/{coupon_id}")
        assert deleted.json() == {"id": coupon_id, "deleted": True}

    def test_create_invalid_coupon(self, admin_api):
        response = admin_api.post("/api/admin/coupons", json={"code": "X", "type": "percent", "value": 0})
        assert response.status_code == 400
        assert response.json()["detail"] == "Percent must be 1 to 100."

    def test_patch_percent_value_out_of_range(self, admin_api):
        response = admin_api.patch("/api/admin/coupons/c-2", json={"value": 150})
        assert response.status_code == 400
        assert response.json()["detail"] == "Percent must be 1 to 100."

    def test_create_duplicate_coupon(self, admin_api):
        response = admin_api.post("/api/admin/coupons", json={"code": "SAVE50", "value": 10})
        assert response.status_code == 500
        assert response.json()["detail"].startswith("Create failed: duplicate key")

    def test_settings_roundtrip(self, admin_api):
        assert admin_api.get("/api/admin/settings").json()["commission_percent"] == "10"
        saved = admin_api.put("/api/admin/settings", json={"commission_percent": "12%", "tax_note": "GST 5%"})
        assert saved.json()["commission_percent"] == "12"
        assert admin_api.get("/api/admin/settings").json()["tax_note"] == "GST 5%"

    def test_settings_table_missing(self, admin_api):
        admin_api.backend.fail("upsert_setting", 'relation "system_settings" does not exist')
        response = admin_api.put("/api/admin/settings", json={})
        assert response.status_code == 500
        assert "system_settings table is missing" in response.json()["detail"]


class TestPaymentRoutes:
    """Tests for card payment endpoints."""

    def test_checkout_session(self, api):
        response = api.post("/api/stripe/checkout", json={"kind": "restaurant", "lines": LINES})
        assert response.status_code == 200
        body = response.json()
        assert body["session_id"].startswith("cs_test_")
        call = api.gateway.calls[0]
        assert call["metadata"]["restaurant_id"] == "r1"
        assert call["metadata"]["success_redirect"] == "/orders"
        assert call["items"][0].quantity == 2

    def test_checkout_requires_items(self, api):
        response = api.post("/api/stripe/checkout", json={"lines": []})
        assert response.status_code == 400
        assert response.json()["detail"] == "No items provided"

    def test_verify_session(self, api):
        session_id = api.post("/api/stripe/checkout", json={"lines": LINES}).json()["session_id"]
        body = api.get(f"/api/stripe/verify-session?session_id={session_id}").json()
        assert body["ok"] is True
        assert body["paid"] is False
        assert body["order_type"] == "restaurant"

    def test_verify_session_missing_id(self, api):
        assert api.get("/api/stripe/verify-session").status_code == 400

    def test_confirm_records_order_once(self, api):
        session_id = api.post("/api/stripe/checkout", json={"lines": LINES}).json()["session_id"]
        api.gateway.mark_paid(session_id)

        payload = {"session_id": session_id, "lines": LINES, "delivery": DELIVERY}
        first = api.post("/api/payments/confirm", json=payload).json()
        second = api.post("/api/payments/confirm", json=payload).json()

        assert first["created"] is True
        assert second["created"] is False
        assert second["order_id"] == first["order_id"]
        assert len(api.backend.rows("orders")) == 1

    def test_confirm_unpaid_is_400(self, api):
        session_id = api.post("/api/stripe/checkout", json={"lines": LINES}).json()["session_id"]
        response = api.post("/api/payments/confirm", json={"session_id": session_id, "lines": LINES})
        assert response.status_code == 400
        assert response.json()["detail"] == "Payment not completed."
