"""
Checkout Module - cart normalization, coupon validation and order totals.

Everything here is synchronous and talks to the data store through the
backend port passed in by the caller.
"""

from .config import CheckoutConfig
from .storage import KeyValueStorage, MemoryStorage, JsonFileStorage
from .cart_store import CartLine, CartStore, AddResult
from .addresses import AddressBook, DeliveryDetails
from .geocoding import GeoPoint, Geocoder, GeocodeUpstreamError
from .coupons import CouponCheck, CouponSummary, CouponValidator, compute_discount
from .totals import PriceBreakdown, compose_totals
from .ladder import WriteLadder, is_missing_column_error
from .placement import CheckoutSession, InFlightGuard, PlaceOrderResult, get_inflight_guard
from .admin import CouponAdmin, PlatformSettings, load_platform_settings, save_platform_settings
from .errors import (
    CheckoutError,
    BackendError,
    OrderWriteError,
    CheckoutBusyError,
    CouponAdminError,
)

# Singleton instances
_config: CheckoutConfig = None
_geocoder: Geocoder = None


def get_config() -> CheckoutConfig:
    """Get or create the checkout config."""
    global _config
    if _config is None:
        _config = CheckoutConfig.from_env()
    return _config


def get_geocoder() -> Geocoder:
    """Get or create the shared geocoder."""
    global _geocoder
    if _geocoder is None:
        _geocoder = Geocoder(get_config())
    return _geocoder


__all__ = [
    'CheckoutConfig',
    'KeyValueStorage',
    'MemoryStorage',
    'JsonFileStorage',
    'CartLine',
    'CartStore',
    'AddResult',
    'AddressBook',
    'DeliveryDetails',
    'GeoPoint',
    'Geocoder',
    'GeocodeUpstreamError',
    'CouponCheck',
    'CouponSummary',
    'CouponValidator',
    'compute_discount',
    'PriceBreakdown',
    'compose_totals',
    'WriteLadder',
    'is_missing_column_error',
    'CheckoutSession',
    'InFlightGuard',
    'PlaceOrderResult',
    'get_inflight_guard',
    'CouponAdmin',
    'PlatformSettings',
    'load_platform_settings',
    'save_platform_settings',
    'CheckoutError',
    'BackendError',
    'OrderWriteError',
    'CheckoutBusyError',
    'CouponAdminError',
    'get_config',
    'get_geocoder',
]
