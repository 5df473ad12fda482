"""
Admin Routes (admin role required)

GET    /api/admin/coupons        - List coupons
POST   /api/admin/coupons        - Create coupon
PATCH  /api/admin/coupons/{id}   - Update coupon fields
DELETE /api/admin/coupons/{id}   - Delete coupon
GET    /api/admin/settings       - Platform settings
PUT    /api/admin/settings       - Save platform settings
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from foodapp.checkout.admin import (
    CouponAdmin,
    PlatformSettings,
    load_platform_settings,
    save_platform_settings,
)
from foodapp.checkout.errors import BackendError, CouponAdminError

from .deps import admin_dep, backend_dep

logger = logging.getLogger("foodapp.admin_routes")

router = APIRouter(prefix="/api/admin", tags=["admin"])


# --- Request Models ---

class CouponCreateRequest(BaseModel):
    code: str = ""
    type: str = "flat"
    value: Optional[Any] = None
    is_active: bool = True
    min_order_amount: Optional[Any] = None
    max_discount: Optional[Any] = None
    starts_at: Optional[str] = None
    expires_at: Optional[str] = None
    usage_limit_total: Optional[Any] = None
    usage_limit_per_user: Optional[Any] = None


class SettingsRequest(BaseModel):
    commission_percent: str = "10"
    delivery_fee_base: str = "20"
    delivery_fee_per_km: str = "0"
    tax_note: str = ""
    feature_owner_multi_restaurants: bool = True
    feature_admin_force_status: bool = True


def backend_failure(action: str, e: BackendError) -> HTTPException:
    logger.error(f"{action} failed: {e.message}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{action} failed: {e.message or 'Unknown error'}"
    )


# --- Coupons ---

@router.get("/coupons")
async def list_coupons(
    admin: Dict[str, Any] = Depends(admin_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    try:
        return {"coupons": CouponAdmin(backend).list()}
    except BackendError as e:
        raise backend_failure("Coupon load", e)


@router.post("/coupons", status_code=status.HTTP_201_CREATED)
async def create_coupon(
    body: CouponCreateRequest,
    admin: Dict[str, Any] = Depends(admin_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    try:
        row = CouponAdmin(backend).create(data)
    except CouponAdminError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BackendError as e:
        raise backend_failure("Create", e)
    return {"coupon": row}


@router.patch("/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: str,
    patch: Dict[str, Any],
    admin: Dict[str, Any] = Depends(admin_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    try:
        applied = CouponAdmin(backend).update(coupon_id, patch)
    except CouponAdminError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BackendError as e:
        raise backend_failure("Update", e)
    return {"id": coupon_id, "updated": applied}


@router.delete("/coupons/{coupon_id}")
async def delete_coupon(
    coupon_id: str,
    admin: Dict[str, Any] = Depends(admin_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    try:
        CouponAdmin(backend).delete(coupon_id)
    except BackendError as e:
        raise backend_failure("Delete", e)
    return {"id": coupon_id, "deleted": True}


# --- Platform settings ---

@router.get("/settings")
async def get_settings(
    admin: Dict[str, Any] = Depends(admin_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    try:
        return load_platform_settings(backend).to_dict()
    except BackendError as e:
        raise backend_failure("Settings load", e)


@router.put("/settings")
async def put_settings(
    body: SettingsRequest,
    admin: Dict[str, Any] = Depends(admin_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    try:
        saved = save_platform_settings(backend, PlatformSettings(**body.model_dump()))
    except BackendError as e:
        if "does not exist" in (e.message or "").lower():
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="system_settings table is missing. Create it before saving settings."
            )
        raise backend_failure("Save", e)
    return saved.to_dict()
