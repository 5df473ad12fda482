"""
Coupon Validator

Decides whether a coupon code applies to a subtotal for an optional user and
computes the discount. Rejections are returned as CouponCheck values with a
human-readable reason; only programming errors raise.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from .errors import BackendError
from .money import D, as_amount, format_money, round_whole, to_number

logger = logging.getLogger(__name__)

COUPON_KINDS = ("flat", "percent")

_TRUTHY = ("true", "1", "yes")


def normalize_code(code: Any) -> str:
    """Trim, drop internal whitespace and upper-case."""
    return re.sub(r"\s+", "", str(code or "")).upper()


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return str(value or "").strip().lower() in _TRUTHY


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are UTC, garbage is None."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text[-1:] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_discount(kind: str, value: Any, subtotal: Any, max_discount: Any = None) -> Optional[float]:
    """
    Discount for a coupon kind, or None when the kind is unknown.

    flat:    min(subtotal, max(0, value))
    percent: round-half-up of subtotal * clamp(value, 0, 100) / 100
    A positive max_discount caps either result.
    """
    base = D(max(0.0, to_number(subtotal, 0.0)))
    amount = D(to_number(value, 0.0))

    if kind == "flat":
        discount = min(base, max(Decimal("0"), amount))
    elif kind == "percent":
        rate = min(Decimal("100"), max(Decimal("0"), amount))
        discount = round_whole(base * rate / Decimal("100"))
    else:
        return None

    cap = to_number(max_discount, 0.0)
    if cap > 0:
        discount = min(discount, D(cap))
    return as_amount(discount)


@dataclass
class CouponSummary:
    """Normalized view of a coupon row, safe to hand to the UI."""

    id: Any
    code: str
    kind: str
    value: float
    max_discount: Optional[float] = None
    min_order_amount: Optional[float] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CouponSummary":
        cap = to_number(row.get("max_discount"), 0.0)
        minimum = to_number(row.get("min_order_amount"), 0.0)
        return cls(
            id=row.get("id"),
            code=normalize_code(row.get("code")),
            kind=str(row.get("type") or "").strip().lower(),
            value=to_number(row.get("value"), 0.0),
            max_discount=cap if cap > 0 else None,
            min_order_amount=minimum if minimum > 0 else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.kind,
            "value": self.value,
            "max_discount": self.max_discount,
            "min_order_amount": self.min_order_amount,
        }


@dataclass
class CouponCheck:
    """Result of validating a coupon."""

    ok: bool
    reason: str = ""
    coupon: Optional[CouponSummary] = None
    discount: float = 0

    @classmethod
    def fail(cls, reason: str) -> "CouponCheck":
        return cls(ok=False, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        if not self.ok:
            return {"ok": False, "reason": self.reason}
        return {"ok": True, "coupon": self.coupon.to_dict(), "discount": self.discount}


class CouponValidator:
    """Validates coupon codes against the data store."""

    def __init__(
        self,
        backend,
        clock: Optional[Callable[[], datetime]] = None,
        currency_symbol: str = "₹",
    ):
        self.backend = backend
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.currency_symbol = currency_symbol

    def _count(self, coupon_id: Any, user_id: Optional[str] = None) -> Optional[int]:
        try:
            return self.backend.count_redemptions(coupon_id, user_id)
        except Exception as e:
            logger.warning(f"Redemption count unavailable for coupon {coupon_id}: {e}")
            return None

    def validate(self, code: Any, subtotal: Any, user_id: Optional[str] = None) -> CouponCheck:
        """
        Check a coupon code.

        Args:
            code: Raw code as typed by the user
            subtotal: Current cart subtotal
            user_id: Authenticated user, if any (enables the per-user cap)

        Returns:
            CouponCheck with the coupon summary and discount, or a reason
        """
        normalized = normalize_code(code)
        if not normalized:
            return CouponCheck.fail("Enter coupon code.")

        try:
            row = self.backend.find_coupon(normalized)
        except BackendError as e:
            logger.error(f"Coupon lookup failed for {normalized}: {e.message}")
            return CouponCheck.fail(e.message or "Coupon lookup failed.")

        if not row:
            return CouponCheck.fail("Invalid coupon code.")

        if not as_bool(row.get("is_active")):
            return CouponCheck.fail("This coupon is not active.")

        now = self.clock()
        starts_at = parse_timestamp(row.get("starts_at"))
        if starts_at and now < starts_at:
            return CouponCheck.fail("Coupon not started yet.")
        expires_at = parse_timestamp(row.get("expires_at"))
        if expires_at and now > expires_at:
            return CouponCheck.fail("Coupon expired.")

        amount = max(0.0, to_number(subtotal, 0.0))
        min_order = to_number(row.get("min_order_amount"), 0.0)
        if min_order > 0 and amount < min_order:
            required = format_money(min_order, self.currency_symbol)
            return CouponCheck.fail(f"Minimum order {required} required for this coupon.")

        total_cap = to_number(row.get("usage_limit_total"), 0.0)
        if total_cap > 0:
            used = self._count(row.get("id"))
            if used is not None and used >= total_cap:
                return CouponCheck.fail("Coupon usage limit reached.")

        per_user_cap = to_number(row.get("usage_limit_per_user"), 0.0)
        if per_user_cap > 0 and user_id:
            used = self._count(row.get("id"), user_id)
            if used is not None and used >= per_user_cap:
                return CouponCheck.fail("You already used this coupon.")

        summary = CouponSummary.from_row(row)
        discount = compute_discount(summary.kind, summary.value, amount, summary.max_discount)
        if discount is None:
            return CouponCheck.fail("Coupon type invalid.")

        return CouponCheck(ok=True, coupon=summary, discount=discount)
