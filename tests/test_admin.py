"""Unit tests for coupon administration and platform settings."""

import pytest

from foodapp.backend import InMemoryBackend
from foodapp.checkout import CouponAdmin, PlatformSettings, load_platform_settings, save_platform_settings
from foodapp.checkout.admin import build_coupon_payload
from foodapp.checkout.errors import BackendError, CouponAdminError


class TestBuildCouponPayload:
    """Tests for admin coupon form validation."""

    def test_minimal_create(self):
        payload = build_coupon_payload({"code": " new 50 ", "type": "FLAT", "value": "50"})
        assert payload == {"code": "NEW50", "type": "flat", "value": 50.0, "is_active": True}

    @pytest.mark.parametrize("data,message", [
        ({"code": "", "value": 10}, "Enter coupon code."),
        ({"code": "X", "type": "bogo", "value": 10}, "Coupon type must be flat or percent."),
        ({"code": "X", "value": ""}, "Enter valid value."),
        ({"code": "X", "value": "abc"}, "Enter valid value."),
        ({"code": "X", "value": -5}, "Enter valid value."),
        ({"code": "X", "type": "percent", "value": 0}, "Percent must be 1 to 100."),
        ({"code": "X", "type": "percent", "value": 150}, "Percent must be 1 to 100."),
        ({"code": "X", "value": 10, "starts_at": "yesterday"}, "Invalid date for starts_at."),
        ({"code": "X", "value": 10, "min_order_amount": -1}, "Min order amount cannot be negative."),
        ({"code": "X", "value": 10, "usage_limit_total": 1.5}, "Usage limit total must be a whole number."),
    ])
    def test_rejections(self, data, message):
        with pytest.raises(CouponAdminError) as exc:
            build_coupon_payload(data)
        assert str(exc.value) == message

    def test_expiry_must_follow_start(self):
        with pytest.raises(CouponAdminError, match="Expiry must be after start."):
            build_coupon_payload({
                "code": "X",
                "value": 10,
                "starts_at": "2025-07-01T00:00:00Z",
                "expires_at": "2025-06-01T00:00:00Z",
            })

    def test_blank_optionals_become_null(self):
        payload = build_coupon_payload({"code": "X", "value": 10, "max_discount": "", "usage_limit_per_user": None})
        assert payload["max_discount"] is None
        assert payload["usage_limit_per_user"] is None

    def test_partial_only_touches_given_fields(self):
        assert build_coupon_payload({"is_active": "false"}, partial=True) == {"is_active": False}
        assert build_coupon_payload({"usage_limit_total": "5"}, partial=True) == {"usage_limit_total": 5}


class TestCouponAdmin:
    """Tests for CouponAdmin against the in-memory store."""

    @pytest.fixture
    def admin(self, backend):
        return CouponAdmin(backend)

    def test_create_and_list(self, admin):
        row = admin.create({"code": "fresh", "type": "percent", "value": 15, "created_at": "2025-07-01"})
        assert row["code"] == "FRESH"
        assert row["id"]
        codes = [c["code"] for c in admin.list()]
        assert "FRESH" in codes

    def test_duplicate_code_is_backend_error(self, admin):
        with pytest.raises(BackendError) as exc:
            admin.create({"code": "SAVE50", "value": 10})
        assert exc.value.code == "23505"

    def test_update(self, admin, backend):
        applied = admin.update("c-1", {"value": 75, "max_discount": ""})
        assert applied == {"value": 75.0, "max_discount": None}
        assert backend.rows("coupons")[0]["value"] == 75.0

    def test_value_update_checked_against_stored_type(self, admin, backend):
        """A value-only patch on a percent coupon still has to be 1 to 100."""
        with pytest.raises(CouponAdminError, match="Percent must be 1 to 100."):
            admin.update("c-2", {"value": 150})
        assert backend.rows("coupons")[1]["value"] == 10

    def test_type_update_checked_against_stored_value(self, admin, backend):
        backend.rows("coupons")[0]["value"] = 500
        with pytest.raises(CouponAdminError, match="Percent must be 1 to 100."):
            admin.update("c-1", {"type": "percent"})
        assert backend.rows("coupons")[0]["type"] == "flat"

    def test_type_update_with_valid_stored_value(self, admin, backend):
        admin.update("c-1", {"type": "percent"})
        assert backend.rows("coupons")[0]["type"] == "percent"

    def test_value_update_on_missing_coupon(self, admin):
        with pytest.raises(CouponAdminError, match="Coupon not found."):
            admin.update("nope", {"value": 10})

    def test_empty_update(self, admin):
        with pytest.raises(CouponAdminError, match="Nothing to update."):
            admin.update("c-1", {})

    def test_set_active_and_delete(self, admin, backend):
        admin.set_active("c-1", False)
        assert backend.rows("coupons")[0]["is_active"] is False
        admin.delete("c-1")
        assert [c["id"] for c in backend.rows("coupons")] == ["c-2"]


class TestPlatformSettings:
    """Tests for platform settings load/save."""

    def test_defaults_when_missing(self):
        settings = load_platform_settings(InMemoryBackend())
        assert settings == PlatformSettings()
        assert settings.tax_note == "Taxes will be configured later as per country/state rules."

    def test_stored_values_merge_over_defaults(self):
        backend = InMemoryBackend({
            "system_settings": [{"key": "platform", "value_json": {"commission_percent": 12, "feature_admin_force_status": "false"}}]
        })
        settings = load_platform_settings(backend)
        assert settings.commission_percent == "12"
        assert settings.feature_admin_force_status is False
        assert settings.delivery_fee_base == "20"

    def test_save_cleans_numbers(self):
        backend = InMemoryBackend()
        saved = save_platform_settings(backend, PlatformSettings(commission_percent="12 %", delivery_fee_base="₹30"))
        assert saved.commission_percent == "12"
        assert saved.delivery_fee_base == "30"
        assert load_platform_settings(backend) == saved

    def test_save_failure_propagates(self):
        backend = InMemoryBackend()
        backend.fail("upsert_setting", 'relation "system_settings" does not exist')
        with pytest.raises(BackendError):
            save_platform_settings(backend, PlatformSettings())
