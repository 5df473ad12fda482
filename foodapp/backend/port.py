"""Data-store port (abstract interface).

Defines the table operations checkout, payments and admin flows need from the
hosted backend. Adapters raise BackendError for transport or storage failures.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from foodapp.checkout.geocoding import GeoPoint

ORDER_TABLES = {
    "restaurant": ("orders", "order_items"),
    "grocery": ("grocery_orders", "grocery_order_items"),
}

STORE_TABLES = {
    "restaurant": "restaurants",
    "grocery": "grocery_stores",
}


class CheckoutBackend(ABC):
    """Abstract data-store interface."""

    # --- coupons ---

    @abstractmethod
    def find_coupon(self, code: str) -> Optional[Dict[str, Any]]:
        """Coupon row for a normalized code, or None when not found."""
        ...

    @abstractmethod
    def count_redemptions(self, coupon_id: Any, user_id: Optional[str] = None) -> Optional[int]:
        """Number of redemption records, or None when the count cannot be determined."""
        ...

    @abstractmethod
    def insert_redemption(self, payload: Dict[str, Any]) -> None:
        """Append a redemption record."""
        ...

    @abstractmethod
    def get_coupon(self, coupon_id: Any) -> Optional[Dict[str, Any]]:
        """Coupon row by id, or None."""
        ...

    @abstractmethod
    def list_coupons(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def create_coupon(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update_coupon(self, coupon_id: Any, patch: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete_coupon(self, coupon_id: Any) -> None:
        ...

    # --- orders ---

    @abstractmethod
    def insert_order(self, table: str, payload: Dict[str, Any]) -> str:
        """Insert an order header and return its generated id."""
        ...

    @abstractmethod
    def insert_order_items(self, table: str, rows: List[Dict[str, Any]]) -> None:
        ...

    @abstractmethod
    def find_order_by_session(self, table: str, session_id: str) -> Optional[str]:
        """Id of the order created for a payment session, if any."""
        ...

    @abstractmethod
    def order_has_items(self, table: str, order_id: str) -> bool:
        ...

    # --- stores, settings, profiles ---

    @abstractmethod
    def store_coordinates(self, kind: str, store_id: Any) -> Optional[GeoPoint]:
        """Pickup coordinates of a restaurant or grocery store."""
        ...

    @abstractmethod
    def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def upsert_setting(self, key: str, value: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def get_profile_role(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def count_coupons(self) -> int:
        """Row count of coupons; doubles as the health-check reachability test."""
        ...
