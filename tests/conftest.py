"""Shared fixtures for checkout tests."""

from datetime import datetime, timezone

import pytest

from foodapp.backend import InMemoryBackend
from foodapp.checkout import CheckoutConfig

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def coupon_row(**overrides):
    row = {
        "id": "c-1",
        "code": "SAVE50",
        "type": "flat",
        "value": 50,
        "is_active": True,
        "min_order_amount": None,
        "max_discount": None,
        "starts_at": None,
        "expires_at": None,
        "usage_limit_total": None,
        "usage_limit_per_user": None,
        "created_at": "2025-06-01T00:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def config():
    return CheckoutConfig()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def backend():
    """In-memory backend with one flat and one percent coupon, a restaurant and a grocery store."""
    return InMemoryBackend(
        {
            "coupons": [
                coupon_row(),
                coupon_row(id="c-2", code="TEN", type="percent", value=10, max_discount=30),
            ],
            "restaurants": [{"id": "r1", "lat": 19.07, "lng": 72.87}],
            "grocery_stores": [{"id": "g1", "lat": 18.52, "lng": 73.85}],
        }
    )


@pytest.fixture
def make_coupon():
    """Factory for coupon rows."""
    return coupon_row
