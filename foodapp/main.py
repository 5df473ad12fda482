"""
FoodApp Checkout Service - FastAPI Backend

Serves:
- GET /health                  : liveness
- GET /healthz                 : readiness (Supabase configured + coupons reachable)
- POST /api/coupons/validate   : Coupon check against a subtotal
- POST /api/cart/quote         : Cart normalization and price breakdown
- POST /api/orders             : Place an order (authenticated)
- POST /api/geocode            : Address lookup
- /api/stripe/*, /api/payments/confirm : Card payments
- /api/admin/*                 : Coupon and platform settings administration
"""

import os
import logging
from typing import Dict, Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, status, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import jwt
from jwt import PyJWTError

from foodapp import __version__
from foodapp.backend import get_backend
from foodapp.routes import admin_router, checkout_router, limiter, payments_router, set_dependencies

# --- Env / Config ---
load_dotenv()

# Environment detection
ENV = os.getenv("ENV", "development")
IS_DEV = ENV == "development"
IS_STAGING = ENV == "staging"
IS_PROD = ENV == "production"

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
# Hosting platforms provide PORT, fallback to APP_PORT or 8000
APP_PORT = int(os.getenv("PORT", os.getenv("APP_PORT", "8000")))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Frontend URL for CORS configuration
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Supabase configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")

# --- App ---
logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("foodapp")

app = FastAPI(
    title="FoodApp Checkout Service",
    version=__version__,
    docs_url=None,
    redoc_url=None,
    openapi_url="/openapi.json",
)

# Add rate limit exceeded handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# CORS - environment-based configuration
def get_cors_origins():
    """Get CORS origins based on environment."""
    if IS_DEV:
        # Development: Allow localhost ports
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    elif IS_STAGING or IS_PROD:
        return [FRONTEND_URL]
    else:
        # Fallback to localhost
        return ["http://localhost:3000"]


cors_origins = get_cors_origins()
logger.info(f"Environment: {ENV}")
logger.info(f"CORS origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"]
)


# --- Authentication Utilities ---

def verify_token(authorization: str = Header(None)) -> Dict[str, Any]:
    """
    Verify Supabase JWT token and return user data.
    Expects Authorization header: "Bearer <token>"
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header"
        )

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization format. Use: Bearer <token>"
        )

    token = authorization.replace("Bearer ", "")

    if not SUPABASE_JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Supabase JWT secret not configured"
        )

    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience="authenticated"
        )

        user_id = payload.get("sub")
        email = payload.get("email")

        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: missing user ID"
            )

        return {
            "user_id": user_id,
            "email": email,
            "payload": payload
        }

    except PyJWTError as e:
        logger.error(f"JWT verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {str(e)}"
        )


def optional_user(authorization: str = Header(None)) -> Optional[Dict[str, Any]]:
    """Verified user when a bearer token is sent, None for anonymous callers."""
    if not authorization:
        return None
    return verify_token(authorization)


set_dependencies(get_backend, verify_token, optional_user)

app.include_router(checkout_router)
app.include_router(admin_router)
app.include_router(payments_router)


# --- Routes ---

@app.get("/health")
async def health():
    """
    Simple health check endpoint.
    Returns 200 OK if the application is running.
    """
    return {"status": "ok"}


@app.get("/healthz", response_class=JSONResponse)
async def healthz() -> JSONResponse:
    """
    Detailed health check endpoint with data-store connectivity test.
    """
    checks: Dict[str, Any] = {
        "supabase_configured": bool(SUPABASE_URL and SUPABASE_KEY and SUPABASE_JWT_SECRET),
    }

    try:
        checks["coupon_count"] = get_backend().count_coupons()
        checks["backend_connected"] = True
    except Exception as e:
        logger.error(f"Backend health check failed: {e}")
        checks["backend_connected"] = False
        checks["error"] = str(e)

    status_overall = "ok" if all([
        checks["supabase_configured"],
        checks.get("backend_connected", False)
    ]) else "degraded"

    payload = {
        "status": status_overall,
        "version": app.version,
        "checks": checks,
    }
    return JSONResponse(payload, status_code=200 if status_overall == "ok" else 503)


if __name__ == "__main__":
    try:
        import uvicorn
    except Exception as exc:
        logger.error("Uvicorn is required to run directly: %s", exc)
        raise
    uvicorn.run(
        "foodapp.main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=False,
        log_level=LOG_LEVEL.lower()
    )
