"""
Checkout Configuration

Configuration dataclass with environment variable loading.
"""

import os
from dataclasses import dataclass
from typing import Tuple


NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"


@dataclass
class CheckoutConfig:
    """Configuration for cart, pricing and coupon checks."""

    # Cart sanitation
    max_safe_qty: int = 20
    max_unit_price: float = 100000.0

    # Pricing
    delivery_fee_base: float = 25.0
    free_delivery_threshold: float = 499.0
    tax_rate: float = 0.05
    currency_symbol: str = "₹"

    # Storage keys (old and new writers used different keys)
    restaurant_cart_keys: Tuple[str, ...] = ("cart_items", "foodapp_cart")
    grocery_cart_keys: Tuple[str, ...] = ("grocery_cart_items", "grocery_cart")
    saved_address_key: str = "foodapp_saved_address"

    # Geocoding
    geocoder_url: str = NOMINATIM_SEARCH_URL
    geocoder_user_agent: str = "FoodApp-Geocoder/1.0"
    geocoder_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "CheckoutConfig":
        """Create config from environment variables."""
        return cls(
            max_safe_qty=int(os.getenv("CART_MAX_SAFE_QTY", "20")),
            max_unit_price=float(os.getenv("CART_MAX_UNIT_PRICE", "100000")),
            delivery_fee_base=float(os.getenv("DELIVERY_FEE_BASE", "25")),
            free_delivery_threshold=float(os.getenv("FREE_DELIVERY_THRESHOLD", "499")),
            tax_rate=float(os.getenv("TAX_RATE", "0.05")),
            currency_symbol=os.getenv("CURRENCY_SYMBOL", "₹"),
            geocoder_url=os.getenv("GEOCODER_URL", NOMINATIM_SEARCH_URL),
            geocoder_user_agent=os.getenv("GEOCODER_USER_AGENT", "FoodApp-Geocoder/1.0"),
            geocoder_timeout=float(os.getenv("GEOCODER_TIMEOUT", "10")),
        )

    def cart_keys(self, kind: str) -> Tuple[str, ...]:
        """Storage keys for a cart kind ('restaurant' or 'grocery')."""
        if kind == "grocery":
            return self.grocery_cart_keys
        return self.restaurant_cart_keys
