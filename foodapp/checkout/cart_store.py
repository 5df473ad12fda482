"""
Cart Normalizer

Reads the cart from every compatible storage key, sanitizes each line, merges
sources by product id (max quantity, never the sum), keeps a single store and
writes the canonical result back to all keys.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import CheckoutConfig
from .money import to_number
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

CartListener = Callable[[List["CartLine"]], None]

# Field aliases per cart kind; the first name is the one written back.
_FIELDS = {
    "restaurant": {
        "product_id": ("menu_item_id", "product_id"),
        "store_id": ("restaurant_id", "store_id"),
        "unit_price": ("price_each", "price", "unit_price"),
    },
    "grocery": {
        "product_id": ("id", "product_id"),
        "store_id": ("store_id", "restaurant_id"),
        "unit_price": ("price", "price_each", "unit_price"),
    },
}


@dataclass
class CartLine:
    """One product line in the active cart."""

    product_id: Any
    store_id: Any
    name: Optional[str] = None
    unit_price: float = 0.0
    qty: int = 1
    image_url: Optional[str] = None
    note: str = ""
    category: Optional[str] = None

    @property
    def key(self) -> str:
        return str(self.product_id)

    @property
    def line_total(self) -> float:
        return self.qty * self.unit_price

    def to_dict(self, kind: str = "restaurant") -> Dict[str, Any]:
        """Serialize in the field names existing readers of this cart kind expect."""
        if kind == "grocery":
            return {
                "id": self.product_id,
                "store_id": self.store_id,
                "name": self.name,
                "price": self.unit_price,
                "qty": self.qty,
                "image_url": self.image_url or "",
                "category": self.category or "General",
            }
        return {
            "menu_item_id": self.product_id,
            "restaurant_id": self.store_id,
            "name": self.name,
            "price_each": self.unit_price,
            "qty": self.qty,
            "image_url": self.image_url or None,
            "note": self.note or "",
        }


@dataclass
class AddResult:
    """Outcome of adding a catalog item to the cart."""

    ok: bool
    message: str = ""
    lines: List[CartLine] = field(default_factory=list)


def sanitize_qty(qty, max_safe_qty: int = 20) -> int:
    """Repair a quantity; anything outside [1, max_safe_qty] is corruption and becomes 1."""
    if isinstance(qty, bool):
        qty = int(qty)
    try:
        n = float(qty)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(n):
        return 1
    i = math.floor(n)
    if i <= 0 or i > max_safe_qty:
        return 1
    return int(i)


def clamp_money(value, lo: float, hi: float, fallback: float) -> float:
    if value is None:
        return fallback
    n = to_number(value, float("nan"))
    if math.isnan(n):
        return fallback
    if n < lo:
        return lo
    if n > hi:
        return hi
    return n


def safe_parse(raw: Optional[str]) -> Any:
    """Decode stored JSON; malformed or missing content yields an empty list."""
    if not raw:
        return []
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return []


def _pick(item: Dict[str, Any], names: Sequence[str]):
    for name in names:
        value = item.get(name)
        if value is not None:
            return value
    return None


def _coerce_line(item: Any, kind: str, config: CheckoutConfig) -> Optional[CartLine]:
    if isinstance(item, CartLine):
        item = item.to_dict(kind)
    if not isinstance(item, dict):
        return None

    names = _FIELDS.get(kind, _FIELDS["restaurant"])
    product_id = _pick(item, names["product_id"])
    store_id = _pick(item, names["store_id"])
    if not product_id or not store_id:
        return None

    grocery = kind == "grocery"
    return CartLine(
        product_id=product_id,
        store_id=store_id,
        name=item.get("name"),
        unit_price=clamp_money(_pick(item, names["unit_price"]), 0, config.max_unit_price, 0),
        qty=sanitize_qty(_pick(item, ("qty", "quantity")), config.max_safe_qty),
        image_url=item.get("image_url") or None,
        note="" if grocery else (item.get("note") or ""),
        category=(item.get("category") or "General") if grocery else None,
    )


def normalize_lines(
    raw: Any, kind: str = "restaurant", config: Optional[CheckoutConfig] = None
) -> List[CartLine]:
    """Sanitize a decoded cart; non-lists and unusable entries are dropped."""
    config = config or CheckoutConfig()
    if not isinstance(raw, (list, tuple)):
        return []
    lines = []
    for item in raw:
        line = _coerce_line(item, kind, config)
        if line is not None:
            lines.append(line)
    return lines


def merge_prefer_max(*sources: Iterable[CartLine]) -> List[CartLine]:
    """
    Merge sources by product id. Quantity is the maximum seen, never the sum;
    missing name/image/price/note are filled from whichever source has them.
    """
    merged: Dict[str, CartLine] = {}
    for source in sources:
        for line in source:
            existing = merged.get(line.key)
            if existing is None:
                merged[line.key] = CartLine(**vars(line))
                continue
            merged[line.key] = CartLine(
                product_id=existing.product_id,
                store_id=existing.store_id,
                name=existing.name or line.name,
                unit_price=existing.unit_price or line.unit_price,
                qty=max(existing.qty or 1, line.qty or 1),
                image_url=existing.image_url or line.image_url,
                note=existing.note or line.note or "",
                category=existing.category or line.category,
            )
    return list(merged.values())


def enforce_single_store(lines: List[CartLine]) -> List[CartLine]:
    """Keep only lines from the first line's store."""
    if not lines:
        return []
    store_id = lines[0].store_id
    return [line for line in lines if line.store_id == store_id]


def canonicalize(
    raw: Any, kind: str = "restaurant", config: Optional[CheckoutConfig] = None
) -> List[CartLine]:
    """Sanitize, dedupe by product id and enforce the single-store invariant."""
    return enforce_single_store(merge_prefer_max(normalize_lines(raw, kind, config)))


def serialize_lines(lines: Iterable[CartLine], kind: str = "restaurant") -> str:
    return json.dumps([line.to_dict(kind) for line in lines], ensure_ascii=False)


def cart_subtotal(lines: Iterable[CartLine]) -> float:
    return sum(line.qty * line.unit_price for line in lines)


class CartStore:
    """
    Canonical cart view over several legacy storage keys.

    Every write fans out to all keys and notifies subscribers. Writes made by
    another writer on the same storage (another tab, another page) are picked
    up through the storage's change notification.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        kind: str = "restaurant",
        config: Optional[CheckoutConfig] = None,
        keys: Optional[Sequence[str]] = None,
    ):
        self.storage = storage
        self.kind = kind
        self.config = config or CheckoutConfig()
        self.keys: Tuple[str, ...] = tuple(keys or self.config.cart_keys(kind))
        self._listeners: List[CartListener] = []
        self._writing = False
        self._unsubscribe_storage = storage.subscribe(self._on_storage_change)

    # --- reads ---

    def _read_source(self, key: str) -> List[CartLine]:
        try:
            raw = self.storage.get(key)
        except Exception as e:
            logger.warning(f"Cart storage read failed for {key}: {e}")
            return []
        return normalize_lines(safe_parse(raw), self.kind, self.config)

    def read(self) -> List[CartLine]:
        """Canonical cart from all keys. No writes, no notifications."""
        sources = [self._read_source(key) for key in self.keys]
        non_empty = [s for s in sources if s]
        if not non_empty:
            return []

        serialized = {serialize_lines(s, self.kind) for s in sources}
        if len(non_empty) == len(sources) and len(serialized) == 1:
            merged = merge_prefer_max(non_empty[0])
        else:
            merged = merge_prefer_max(*sources)
        return enforce_single_store(merged)

    def lines(self) -> List[CartLine]:
        return self.read()

    def subtotal(self) -> float:
        return cart_subtotal(self.read())

    def store_id(self):
        lines = self.read()
        return lines[0].store_id if lines else None

    # --- writes ---

    def _write(self, lines: List[CartLine]) -> None:
        payload = serialize_lines(lines, self.kind)
        self._writing = True
        try:
            self.storage.set_many({key: payload for key in self.keys})
        except Exception as e:
            logger.warning(f"Cart storage write failed: {e}")
        finally:
            self._writing = False
        self._emit(lines)

    def load(self) -> List[CartLine]:
        """Read, repair every key to the canonical cart and notify."""
        lines = self.read()
        self._write(lines)
        return lines

    def save(self, lines: Iterable[Any]) -> List[CartLine]:
        cleaned = canonicalize(list(lines), self.kind, self.config)
        self._write(cleaned)
        return cleaned

    def clear(self) -> List[CartLine]:
        return self.save([])

    def add(
        self,
        product_id,
        store_id,
        name: Optional[str] = None,
        unit_price: float = 0.0,
        qty: int = 1,
        image_url: Optional[str] = None,
        note: str = "",
        category: Optional[str] = None,
    ) -> AddResult:
        """Add a catalog item, merging with an existing line for the same product."""
        lines = self.read()
        if lines and lines[0].store_id != store_id:
            return AddResult(
                ok=False,
                message="Cart has items from another store. Clear cart first.",
                lines=lines,
            )

        amount = sanitize_qty(qty, self.config.max_safe_qty)
        for line in lines:
            if line.key == str(product_id):
                line.qty = min(line.qty + amount, self.config.max_safe_qty)
                break
        else:
            lines.append(
                CartLine(
                    product_id=product_id,
                    store_id=store_id,
                    name=name,
                    unit_price=unit_price,
                    qty=amount,
                    image_url=image_url,
                    note=note,
                    category=category,
                )
            )
        return AddResult(ok=True, lines=self.save(lines))

    def set_qty(self, product_id, qty: int) -> List[CartLine]:
        """Set a line's quantity; zero or less removes the line."""
        lines = self.read()
        target = str(product_id)
        if to_number(qty, 0) <= 0:
            return self.save([line for line in lines if line.key != target])
        for line in lines:
            if line.key == target:
                line.qty = sanitize_qty(qty, self.config.max_safe_qty)
        return self.save(lines)

    def increment(self, product_id) -> List[CartLine]:
        lines = self.read()
        for line in lines:
            if line.key == str(product_id):
                line.qty = min(line.qty + 1, self.config.max_safe_qty)
        return self.save(lines)

    def decrement(self, product_id) -> List[CartLine]:
        for line in self.read():
            if line.key == str(product_id):
                return self.set_qty(product_id, line.qty - 1)
        return self.read()

    def remove(self, product_id) -> List[CartLine]:
        return self.save([line for line in self.read() if line.key != str(product_id)])

    # --- notifications ---

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Register a listener receiving the canonical lines after every change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        self._unsubscribe_storage()
        self._listeners.clear()

    def _emit(self, lines: List[CartLine]) -> None:
        for listener in list(self._listeners):
            try:
                listener(list(lines))
            except Exception as e:
                logger.error(f"Cart listener failed: {e}")

    def _on_storage_change(self, key: str) -> None:
        if self._writing or key not in self.keys:
            return
        # Last writer wins; reload without writing back.
        self._emit(self.read())
