"""
Route modules for the foodapp checkout service.
"""

from .checkout import router as checkout_router
from .admin import router as admin_router
from .payments import router as payments_router
from .deps import limiter, set_dependencies

__all__ = ["checkout_router", "admin_router", "payments_router", "limiter", "set_dependencies"]
