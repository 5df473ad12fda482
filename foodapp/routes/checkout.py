"""
Checkout Routes

POST /api/coupons/validate - Validate a coupon code against a subtotal
POST /api/cart/quote       - Normalize posted cart lines and price them
POST /api/orders           - Place an order from posted cart lines (authenticated)
POST /api/geocode          - Address to coordinates lookup
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from foodapp.checkout import CartStore, CheckoutSession, MemoryStorage, get_config, get_geocoder, get_inflight_guard
from foodapp.checkout.addresses import DeliveryDetails
from foodapp.checkout.coupons import CouponValidator
from foodapp.checkout.geocoding import GeocodeUpstreamError
from foodapp.checkout.placement import PAYMENT_METHODS

from .deps import backend_dep, limiter, optional_user_dep, token_dep

logger = logging.getLogger("foodapp.checkout_routes")

router = APIRouter(prefix="/api", tags=["checkout"])

CART_KINDS = ("restaurant", "grocery")


# --- Request Models ---

class CouponValidateRequest(BaseModel):
    code: str = ""
    subtotal: float = 0


class QuoteRequest(BaseModel):
    kind: str = "restaurant"
    lines: List[Dict[str, Any]] = []
    tip: float = 0
    coupon_code: Optional[str] = None


class DeliveryRequest(BaseModel):
    customer_name: str = ""
    phone: str = ""
    address_line1: str = ""
    address_line2: str = ""
    landmark: str = ""
    instructions: str = ""


class PlaceOrderRequest(BaseModel):
    kind: str = "restaurant"
    lines: List[Dict[str, Any]] = []
    delivery: DeliveryRequest = DeliveryRequest()
    tip: float = 0
    coupon_code: Optional[str] = None
    payment_method: str = "card"


class GeocodeRequest(BaseModel):
    q: Optional[str] = None


# --- Helper Functions ---

def geocoder_dep():
    """Shared geocoder; overridden in tests."""
    return get_geocoder()


def check_kind(kind: str) -> str:
    kind = (kind or "").strip().lower()
    if kind not in CART_KINDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="kind must be 'restaurant' or 'grocery'"
        )
    return kind


def build_session(kind: str, lines: List[Dict[str, Any]], backend, geocoder=None) -> CheckoutSession:
    """Server-side checkout session over the posted cart lines."""
    config = get_config()
    keys = config.cart_keys(kind)
    storage = MemoryStorage({keys[0]: json.dumps(lines)})
    cart = CartStore(storage, kind=kind, config=config, keys=keys)
    return CheckoutSession(cart, backend, geocoder=geocoder, config=config)


def user_id_of(user: Optional[Dict[str, Any]]) -> Optional[str]:
    return user.get("user_id") if user else None


# --- Routes ---

@router.post("/coupons/validate")
@limiter.limit("30/minute")
async def validate_coupon(
    request: Request,
    body: CouponValidateRequest,
    user: Optional[Dict[str, Any]] = Depends(optional_user_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    """
    Validate a coupon code.

    Returns: { ok: true, coupon, discount } or { ok: false, reason }
    """
    config = get_config()
    validator = CouponValidator(backend, currency_symbol=config.currency_symbol)
    return validator.validate(body.code, body.subtotal, user_id_of(user)).to_dict()


@router.post("/cart/quote")
async def quote_cart(
    body: QuoteRequest,
    user: Optional[Dict[str, Any]] = Depends(optional_user_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    """
    Price a cart: canonical lines, breakdown and coupon outcome.

    Returns: { lines, breakdown, coupon, coupon_error }
    """
    kind = check_kind(body.kind)
    session = build_session(kind, body.lines, backend)
    session.set_tip(body.tip)

    coupon_error = None
    if body.coupon_code:
        check = session.apply_coupon(body.coupon_code, user_id_of(user))
        if not check.ok:
            coupon_error = check.reason

    return {
        "kind": kind,
        "lines": [line.to_dict(kind) for line in session.lines()],
        "breakdown": session.breakdown().to_dict(),
        "coupon": session.coupon.to_dict() if session.coupon else None,
        "coupon_error": coupon_error,
    }


@router.post("/orders")
async def place_order(
    body: PlaceOrderRequest,
    user: Dict[str, Any] = Depends(token_dep),
    backend=Depends(backend_dep),
    geocoder=Depends(geocoder_dep),
) -> Dict[str, Any]:
    """
    Place an order from the posted cart.

    Returns: { ok, order_id, info, breakdown, coupon, notes }
    """
    user_id = user["user_id"]
    kind = check_kind(body.kind)
    if body.payment_method not in PAYMENT_METHODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"payment_method must be one of {', '.join(PAYMENT_METHODS)}"
        )

    if get_inflight_guard().busy(user_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Order is already being placed.")

    try:
        session = build_session(kind, body.lines, backend, geocoder)
        session.payment_method = body.payment_method
        session.set_tip(body.tip)

        if body.coupon_code:
            check = session.apply_coupon(body.coupon_code, user_id)
            if not check.ok:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=check.reason)

        result = session.place_order(user_id, DeliveryDetails(**body.delivery.model_dump()))

        if result.busy:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error)
        if not result.ok and result.step:
            logger.error(f"Order write failed for user {user_id} at {result.step}: {result.error}")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
        if not result.ok:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)

        return result.to_dict()

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to place order for user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to place order"
        )


@router.post("/geocode")
@limiter.limit("30/minute")
async def geocode(
    request: Request,
    body: GeocodeRequest,
    geocoder=Depends(geocoder_dep),
) -> Dict[str, Any]:
    """
    Look up coordinates for a free-text address.

    Returns: { ok, lat, lng, display_name }
    """
    q = (body.q or "").strip()
    if not q:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing address query")

    try:
        point = geocoder.search(q)
    except GeocodeUpstreamError as e:
        logger.error(f"Geocode upstream failure: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    if point is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address not found")
    return {"ok": True, **point.to_dict()}
