"""
Payment Routes

POST /api/stripe/checkout        - Create a hosted checkout session for a cart
GET  /api/stripe/verify-session  - Report the payment state of a session
POST /api/payments/confirm       - Record the paid order (authenticated, idempotent per session)
"""

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from foodapp.checkout import get_config
from foodapp.checkout.addresses import DeliveryDetails
from foodapp.checkout.cart_store import canonicalize
from foodapp.checkout.errors import BackendError
from foodapp.payments import (
    CheckoutItem,
    PaymentError,
    get_gateway,
    record_paid_order,
)

from .checkout import DeliveryRequest, check_kind
from .deps import backend_dep, token_dep

logger = logging.getLogger("foodapp.payment_routes")

router = APIRouter(prefix="/api", tags=["payments"])


# --- Request Models ---

class StripeCheckoutRequest(BaseModel):
    kind: str = "restaurant"
    lines: List[Dict[str, Any]] = []
    success_redirect: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    session_id: str
    kind: Optional[str] = None
    lines: List[Dict[str, Any]] = []
    delivery: Optional[DeliveryRequest] = None


# --- Helper Functions ---

def gateway_dep():
    try:
        return get_gateway()
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def base_url(request: Request) -> str:
    """PUBLIC_BASE_URL, else derived from forwarded or host headers."""
    env_url = os.getenv("PUBLIC_BASE_URL", "").strip()
    if env_url:
        return env_url.rstrip("/")
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or "localhost:3000"
    proto = request.headers.get("x-forwarded-proto") or "http"
    return f"{proto}://{host}".rstrip("/")


# --- Routes ---

@router.post("/stripe/checkout")
async def stripe_checkout(
    request: Request,
    body: StripeCheckoutRequest,
    gateway=Depends(gateway_dep),
) -> Dict[str, Any]:
    """
    Create a checkout session for the posted cart.

    Returns: { url, session_id }
    """
    kind = check_kind(body.kind)
    lines = canonicalize(body.lines, kind, get_config())
    if not lines:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No items provided")

    default_name = "Grocery Item" if kind == "grocery" else "Menu Item"
    items = [CheckoutItem(name=line.name or default_name, price=line.unit_price, quantity=line.qty) for line in lines]
    store_id = str(lines[0].store_id)
    metadata = {
        "order_type": kind,
        "restaurant_id": store_id if kind == "restaurant" else "",
        "store_id": store_id if kind == "grocery" else "",
        "success_redirect": body.success_redirect or ("/groceries/orders" if kind == "grocery" else "/orders"),
        "cart_mode": kind,
    }

    root = base_url(request)
    try:
        session = gateway.create_checkout_session(
            items,
            metadata,
            success_url=f"{root}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{root}/payment/cancel",
        )
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e) or "Stripe error")

    return {"url": session.url, "session_id": session.session_id}


@router.get("/stripe/verify-session")
async def verify_session(
    session_id: str = Query(""),
    gateway=Depends(gateway_dep),
) -> Dict[str, Any]:
    """Payment state of a checkout session."""
    if not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing session_id")
    try:
        return gateway.verify_session(session_id).to_dict()
    except PaymentError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e) or "Verify session error"
        )


@router.post("/payments/confirm")
async def confirm_payment(
    body: ConfirmPaymentRequest,
    user: Dict[str, Any] = Depends(token_dep),
    backend=Depends(backend_dep),
    gateway=Depends(gateway_dep),
) -> Dict[str, Any]:
    """
    Record the order for a paid session. Safe to call repeatedly.

    Returns: { order_id, order_type, created, items_saved, items_error }
    """
    user_id = user["user_id"]
    try:
        verification = gateway.verify_session(body.session_id)
        kind = verification.order_type if verification.order_type in ("restaurant", "grocery") else None
        kind = kind or check_kind(body.kind or "restaurant")
        lines = canonicalize(body.lines, kind, get_config())
        delivery = DeliveryDetails(**body.delivery.model_dump()) if body.delivery else None

        result = record_paid_order(backend, verification, lines, user_id, delivery=delivery, kind=kind)
        return result.to_dict()

    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BackendError as e:
        logger.error(f"Paid order insert failed for session {body.session_id}: {e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to confirm payment for user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record paid order"
        )
