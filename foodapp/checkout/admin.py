"""
Coupon administration and platform settings

Admin-side writes to the coupons table and the "platform" row of
system_settings. Payloads are validated here; store failures propagate as
BackendError for the caller to report.
"""

import logging
import math
import re
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional

from .coupons import COUPON_KINDS, as_bool, normalize_code, parse_timestamp
from .errors import CouponAdminError

logger = logging.getLogger(__name__)

PLATFORM_SETTINGS_KEY = "platform"

_OPTIONAL_AMOUNTS = ("min_order_amount", "max_discount")
_OPTIONAL_LIMITS = ("usage_limit_total", "usage_limit_per_user")
_OPTIONAL_TIMES = ("starts_at", "expires_at")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _number(value: Any, label: str) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise CouponAdminError(f"Enter valid {label}.")
    if not math.isfinite(n):
        raise CouponAdminError(f"Enter valid {label}.")
    return n


def check_coupon_value(kind: str, value: float) -> None:
    """Percent coupons take 1 to 100; no coupon value may be negative."""
    if kind == "percent" and (value <= 0 or value > 100):
        raise CouponAdminError("Percent must be 1 to 100.")
    if value < 0:
        raise CouponAdminError("Enter valid value.")


def build_coupon_payload(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate an admin coupon form and return the row to write.

    With partial=True only the fields present in data are validated and
    returned (used for updates). Raises CouponAdminError on the first problem.
    """
    payload: Dict[str, Any] = {}

    if not partial or "code" in data:
        code = normalize_code(data.get("code"))
        if not code:
            raise CouponAdminError("Enter coupon code.")
        payload["code"] = code

    if not partial or "type" in data:
        kind = str(data.get("type") or "flat").strip().lower()
        if kind not in COUPON_KINDS:
            raise CouponAdminError("Coupon type must be flat or percent.")
        payload["type"] = kind

    if not partial or "value" in data:
        if _blank(data.get("value")):
            raise CouponAdminError("Enter valid value.")
        payload["value"] = _number(data.get("value"), "value")

    if "value" in payload:
        check_coupon_value(payload.get("type") or str(data.get("type") or "").strip().lower(), payload["value"])

    if not partial or "is_active" in data:
        payload["is_active"] = as_bool(data.get("is_active", True))

    for name in _OPTIONAL_AMOUNTS:
        if name in data:
            if _blank(data[name]):
                payload[name] = None
                continue
            amount = _number(data[name], name.replace("_", " "))
            if amount < 0:
                raise CouponAdminError(f"{name.replace('_', ' ').capitalize()} cannot be negative.")
            payload[name] = amount

    for name in _OPTIONAL_TIMES:
        if name in data:
            if _blank(data[name]):
                payload[name] = None
                continue
            parsed = parse_timestamp(data[name])
            if parsed is None:
                raise CouponAdminError(f"Invalid date for {name}.")
            payload[name] = parsed.isoformat()

    if payload.get("starts_at") and payload.get("expires_at"):
        if parse_timestamp(payload["expires_at"]) <= parse_timestamp(payload["starts_at"]):
            raise CouponAdminError("Expiry must be after start.")

    for name in _OPTIONAL_LIMITS:
        if name in data:
            if _blank(data[name]):
                payload[name] = None
                continue
            limit = _number(data[name], name.replace("_", " "))
            if limit < 0 or limit != int(limit):
                raise CouponAdminError(f"{name.replace('_', ' ').capitalize()} must be a whole number.")
            payload[name] = int(limit)

    return payload


class CouponAdmin:
    """Coupon CRUD for administrators."""

    def __init__(self, backend):
        self.backend = backend

    def list(self) -> List[Dict[str, Any]]:
        return self.backend.list_coupons()

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = build_coupon_payload(data)
        row = self.backend.create_coupon(payload)
        logger.info(f"Coupon {payload['code']} created")
        return row

    def update(self, coupon_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update.

        When type or value changes, the stored row supplies the other half so
        the merged coupon is checked as a whole.
        """
        payload = build_coupon_payload(patch, partial=True)
        if not payload:
            raise CouponAdminError("Nothing to update.")
        if "type" in payload or "value" in payload:
            current = self.backend.get_coupon(coupon_id)
            if current is None:
                raise CouponAdminError("Coupon not found.")
            kind = payload.get("type") or str(current.get("type") or "flat").strip().lower()
            value = payload["value"] if "value" in payload else _number(current.get("value"), "value")
            check_coupon_value(kind, value)
        self.backend.update_coupon(coupon_id, payload)
        logger.info(f"Coupon {coupon_id} updated: {sorted(payload)}")
        return payload

    def set_active(self, coupon_id: Any, active: bool) -> None:
        self.backend.update_coupon(coupon_id, {"is_active": bool(active)})

    def delete(self, coupon_id: Any) -> None:
        self.backend.delete_coupon(coupon_id)
        logger.info(f"Coupon {coupon_id} deleted")


def _number_string(value: Any) -> str:
    """Keep digits and dots only, as the settings form stores numbers as text."""
    return re.sub(r"[^\d.]", "", str(value if value is not None else "").strip())


@dataclass
class PlatformSettings:
    """Platform-wide settings stored as JSON under system_settings.key = 'platform'."""

    commission_percent: str = "10"
    delivery_fee_base: str = "20"
    delivery_fee_per_km: str = "0"
    tax_note: str = "Taxes will be configured later as per country/state rules."
    feature_owner_multi_restaurants: bool = True
    feature_admin_force_status: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PlatformSettings":
        settings = cls()
        if not isinstance(data, dict):
            return settings
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            if f.type is bool or f.type == "bool":
                setattr(settings, f.name, as_bool(data[f.name]))
            else:
                setattr(settings, f.name, str(data[f.name]))
        return settings

    def cleaned(self) -> "PlatformSettings":
        return PlatformSettings(
            commission_percent=_number_string(self.commission_percent),
            delivery_fee_base=_number_string(self.delivery_fee_base),
            delivery_fee_per_km=_number_string(self.delivery_fee_per_km),
            tax_note=str(self.tax_note or ""),
            feature_owner_multi_restaurants=bool(self.feature_owner_multi_restaurants),
            feature_admin_force_status=bool(self.feature_admin_force_status),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_platform_settings(backend) -> PlatformSettings:
    """Stored settings merged over the defaults; a missing row yields defaults."""
    return PlatformSettings.from_dict(backend.get_setting(PLATFORM_SETTINGS_KEY))


def save_platform_settings(backend, settings: PlatformSettings) -> PlatformSettings:
    cleaned = settings.cleaned()
    backend.upsert_setting(PLATFORM_SETTINGS_KEY, cleaned.to_dict())
    logger.info("Platform settings saved")
    return cleaned
