"""Order totals: subtotal, delivery fee, tax, tip and discount."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from .cart_store import CartLine
from .config import CheckoutConfig
from .money import D, as_amount, round_whole, to_number


@dataclass
class PriceBreakdown:
    """Payable amount and its parts; every field is a whole or decimal currency amount."""

    subtotal: float
    delivery_fee: float
    tax: float
    tip: float
    discount: float
    total: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "tax": self.tax,
            "tip": self.tip,
            "discount": self.discount,
            "total": self.total,
        }


def subtotal_of(lines: Iterable[CartLine]) -> Decimal:
    return sum((D(line.unit_price) * line.qty for line in lines), Decimal("0"))


def delivery_fee_for(subtotal, has_items: bool, config: CheckoutConfig) -> Decimal:
    """Flat base fee, waived for an empty cart or once the free-delivery threshold is met."""
    if not has_items:
        return Decimal("0")
    if D(subtotal) >= D(config.free_delivery_threshold):
        return Decimal("0")
    return D(config.delivery_fee_base)


def tax_for(subtotal, config: CheckoutConfig) -> Decimal:
    """Tax on the subtotal only."""
    return round_whole(D(subtotal) * D(config.tax_rate))


def payable(subtotal, delivery_fee, tax, tip, discount) -> Decimal:
    total = D(subtotal) + D(delivery_fee) + D(tax) + D(tip) - D(discount)
    return max(Decimal("0"), total)


def compose_totals(
    lines: Iterable[CartLine],
    tip: Any = 0,
    discount: Any = 0,
    config: Optional[CheckoutConfig] = None,
) -> PriceBreakdown:
    config = config or CheckoutConfig()
    lines = list(lines)
    subtotal = subtotal_of(lines)
    fee = delivery_fee_for(subtotal, bool(lines), config)
    tax = tax_for(subtotal, config)
    tip_amount = D(max(0.0, to_number(tip, 0.0)))
    discount_amount = D(max(0.0, to_number(discount, 0.0)))
    return PriceBreakdown(
        subtotal=as_amount(subtotal),
        delivery_fee=as_amount(fee),
        tax=as_amount(tax),
        tip=as_amount(tip_amount),
        discount=as_amount(discount_amount),
        total=as_amount(payable(subtotal, fee, tax, tip_amount, discount_amount)),
    )
