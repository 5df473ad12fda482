"""
Supabase adapter for the data-store port.

Every query goes through _execute so PostgREST and transport failures surface
as BackendError with the store's own message.
"""

import logging
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from foodapp.checkout.errors import BackendError
from foodapp.checkout.geocoding import GeoPoint, coerce_point

from .port import STORE_TABLES, CheckoutBackend

logger = logging.getLogger(__name__)

COUPON_COLUMNS = (
    "id, code, type, value, is_active, min_order_amount, max_discount, "
    "starts_at, expires_at, usage_limit_total, usage_limit_per_user"
)

ADMIN_COUPON_COLUMNS = COUPON_COLUMNS + ", used_count, created_at"


class SupabaseBackend(CheckoutBackend):
    """Data store backed by the hosted Supabase project."""

    def __init__(self, client: Client):
        self.client = client

    def _execute(self, query, what: str):
        try:
            return query.execute()
        except APIError as e:
            message = e.message or str(e)
            raise BackendError(message, code=e.code) from e
        except Exception as e:
            raise BackendError(f"{what} failed: {e}") from e

    @staticmethod
    def _first(response) -> Optional[Dict[str, Any]]:
        data = response.data or []
        return data[0] if data else None

    # --- coupons ---

    def find_coupon(self, code: str) -> Optional[Dict[str, Any]]:
        query = self.client.table("coupons").select(COUPON_COLUMNS).eq("code", code).limit(1)
        return self._first(self._execute(query, "Coupon lookup"))

    def get_coupon(self, coupon_id: Any) -> Optional[Dict[str, Any]]:
        query = self.client.table("coupons").select(COUPON_COLUMNS).eq("id", coupon_id).limit(1)
        return self._first(self._execute(query, "Coupon read"))

    def count_redemptions(self, coupon_id: Any, user_id: Optional[str] = None) -> Optional[int]:
        query = (
            self.client.table("coupon_redemptions")
            .select("id", count="exact", head=True)
            .eq("coupon_id", coupon_id)
        )
        if user_id:
            query = query.eq("user_id", user_id)
        try:
            response = self._execute(query, "Redemption count")
        except BackendError as e:
            logger.warning(f"Redemption count failed for coupon {coupon_id}: {e.message}")
            return None
        return response.count if isinstance(response.count, int) else None

    def insert_redemption(self, payload: Dict[str, Any]) -> None:
        self._execute(self.client.table("coupon_redemptions").insert(payload), "Redemption insert")

    def list_coupons(self) -> List[Dict[str, Any]]:
        query = self.client.table("coupons").select(ADMIN_COUPON_COLUMNS).order("created_at", desc=True)
        return self._execute(query, "Coupon list").data or []

    def create_coupon(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        row = self._first(self._execute(self.client.table("coupons").insert(payload), "Coupon create"))
        return row or dict(payload)

    def update_coupon(self, coupon_id: Any, patch: Dict[str, Any]) -> None:
        self._execute(self.client.table("coupons").update(patch).eq("id", coupon_id), "Coupon update")

    def delete_coupon(self, coupon_id: Any) -> None:
        self._execute(self.client.table("coupons").delete().eq("id", coupon_id), "Coupon delete")

    def count_coupons(self) -> int:
        query = self.client.table("coupons").select("id", count="exact", head=True)
        return self._execute(query, "Coupon count").count or 0

    # --- orders ---

    def insert_order(self, table: str, payload: Dict[str, Any]) -> str:
        row = self._first(self._execute(self.client.table(table).insert(payload), f"{table} insert"))
        if not row or not row.get("id"):
            raise BackendError(f"{table} insert returned no id")
        return str(row["id"])

    def insert_order_items(self, table: str, rows: List[Dict[str, Any]]) -> None:
        if rows:
            self._execute(self.client.table(table).insert(rows), f"{table} insert")

    def find_order_by_session(self, table: str, session_id: str) -> Optional[str]:
        query = self.client.table(table).select("id").eq("stripe_session_id", session_id).limit(1)
        row = self._first(self._execute(query, f"{table} lookup"))
        return str(row["id"]) if row else None

    def order_has_items(self, table: str, order_id: str) -> bool:
        query = self.client.table(table).select("id").eq("order_id", order_id).limit(1)
        return bool(self._execute(query, f"{table} lookup").data)

    # --- stores, settings, profiles ---

    def store_coordinates(self, kind: str, store_id: Any) -> Optional[GeoPoint]:
        table = STORE_TABLES.get(kind, STORE_TABLES["restaurant"])
        query = self.client.table(table).select("lat, lng").eq("id", store_id).limit(1)
        row = self._first(self._execute(query, f"{table} lookup"))
        if not row:
            return None
        return coerce_point(row.get("lat"), row.get("lng"))

    def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        query = self.client.table("system_settings").select("key, value_json").eq("key", key).limit(1)
        row = self._first(self._execute(query, "Settings lookup"))
        if not row:
            return None
        value = row.get("value_json")
        return value if isinstance(value, dict) else {}

    def upsert_setting(self, key: str, value: Dict[str, Any]) -> None:
        query = self.client.table("system_settings").upsert({"key": key, "value_json": value}, on_conflict="key")
        self._execute(query, "Settings save")

    def get_profile_role(self, user_id: str) -> Optional[str]:
        # Older projects keyed profiles by id instead of user_id
        for column in ("user_id", "id"):
            query = self.client.table("profiles").select("role").eq(column, user_id).limit(1)
            row = self._first(self._execute(query, "Profile lookup"))
            if row:
                return row.get("role")
        return None
