"""In-memory data store for tests and offline CLI runs.

Tables are plain lists of dicts. Operations can be told to fail, and tables
can be told to reject columns, to exercise the error and write-ladder paths.
"""

import copy
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from foodapp.checkout.errors import BackendError
from foodapp.checkout.geocoding import GeoPoint, coerce_point

from .port import STORE_TABLES, CheckoutBackend

logger = logging.getLogger(__name__)


class InMemoryBackend(CheckoutBackend):
    """Dict-backed data store."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.failures: Dict[str, str] = {}
        self.missing_columns: Dict[str, set] = {}
        self.calls: List[str] = []

    # --- test controls ---

    def fail(self, operation: str, message: str = "Backend unavailable") -> None:
        """Make every call of an operation raise BackendError(message)."""
        self.failures[operation] = message

    def recover(self, operation: str) -> None:
        self.failures.pop(operation, None)

    def reject_columns(self, table: str, *columns: str) -> None:
        """Make inserts into table fail when the payload carries any of these columns."""
        self.missing_columns.setdefault(table, set()).update(columns)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        message = self.failures.get(operation)
        if message is not None:
            raise BackendError(message)

    def _check_columns(self, table: str, payload: Dict[str, Any]) -> None:
        for column in payload:
            if column in self.missing_columns.get(table, ()):
                raise BackendError(
                    f'column "{column}" of relation "{table}" does not exist', code="42703"
                )

    def _insert(self, table: str, payloads: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        payloads = list(payloads)
        for payload in payloads:
            self._check_columns(table, payload)
        inserted = []
        for payload in payloads:
            row = copy.deepcopy(payload)
            row.setdefault("id", uuid.uuid4().hex)
            self.rows(table).append(row)
            inserted.append(row)
        return inserted

    def _find(self, table: str, **match: Any) -> List[Dict[str, Any]]:
        return [
            row for row in self.rows(table)
            if all(str(row.get(k)) == str(v) for k, v in match.items())
        ]

    # --- coupons ---

    def find_coupon(self, code: str) -> Optional[Dict[str, Any]]:
        self._enter("find_coupon")
        found = self._find("coupons", code=code)
        return dict(found[0]) if found else None

    def get_coupon(self, coupon_id: Any) -> Optional[Dict[str, Any]]:
        self._enter("get_coupon")
        found = self._find("coupons", id=coupon_id)
        return dict(found[0]) if found else None

    def count_redemptions(self, coupon_id: Any, user_id: Optional[str] = None) -> Optional[int]:
        try:
            self._enter("count_redemptions")
        except BackendError as e:
            logger.warning(f"Redemption count failed for coupon {coupon_id}: {e.message}")
            return None
        match = {"coupon_id": coupon_id}
        if user_id:
            match["user_id"] = user_id
        return len(self._find("coupon_redemptions", **match))

    def insert_redemption(self, payload: Dict[str, Any]) -> None:
        self._enter("insert_redemption")
        self._insert("coupon_redemptions", [payload])

    def list_coupons(self) -> List[Dict[str, Any]]:
        self._enter("list_coupons")
        rows = sorted(self.rows("coupons"), key=lambda r: str(r.get("created_at") or ""), reverse=True)
        return [dict(row) for row in rows]

    def create_coupon(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._enter("create_coupon")
        if self._find("coupons", code=payload.get("code")):
            raise BackendError(
                'duplicate key value violates unique constraint "coupons_code_key"', code="23505"
            )
        return dict(self._insert("coupons", [payload])[0])

    def update_coupon(self, coupon_id: Any, patch: Dict[str, Any]) -> None:
        self._enter("update_coupon")
        for row in self._find("coupons", id=coupon_id):
            row.update(patch)

    def delete_coupon(self, coupon_id: Any) -> None:
        self._enter("delete_coupon")
        self.tables["coupons"] = [r for r in self.rows("coupons") if str(r.get("id")) != str(coupon_id)]

    def count_coupons(self) -> int:
        self._enter("count_coupons")
        return len(self.rows("coupons"))

    # --- orders ---

    def insert_order(self, table: str, payload: Dict[str, Any]) -> str:
        self._enter("insert_order")
        return str(self._insert(table, [payload])[0]["id"])

    def insert_order_items(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self._enter("insert_order_items")
        self._insert(table, rows)

    def find_order_by_session(self, table: str, session_id: str) -> Optional[str]:
        self._enter("find_order_by_session")
        found = self._find(table, stripe_session_id=session_id)
        return str(found[0]["id"]) if found else None

    def order_has_items(self, table: str, order_id: str) -> bool:
        self._enter("order_has_items")
        return bool(self._find(table, order_id=order_id))

    # --- stores, settings, profiles ---

    def store_coordinates(self, kind: str, store_id: Any) -> Optional[GeoPoint]:
        self._enter("store_coordinates")
        found = self._find(STORE_TABLES.get(kind, STORE_TABLES["restaurant"]), id=store_id)
        if not found:
            return None
        return coerce_point(found[0].get("lat"), found[0].get("lng"))

    def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        self._enter("get_setting")
        found = self._find("system_settings", key=key)
        return copy.deepcopy(found[0].get("value_json") or {}) if found else None

    def upsert_setting(self, key: str, value: Dict[str, Any]) -> None:
        self._enter("upsert_setting")
        found = self._find("system_settings", key=key)
        if found:
            found[0]["value_json"] = copy.deepcopy(value)
        else:
            self.rows("system_settings").append({"key": key, "value_json": copy.deepcopy(value)})

    def get_profile_role(self, user_id: str) -> Optional[str]:
        self._enter("get_profile_role")
        found = self._find("profiles", user_id=user_id) or self._find("profiles", id=user_id)
        return found[0].get("role") if found else None
