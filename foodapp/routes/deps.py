"""
Shared route dependencies.

main.py injects the real backend and auth callables with set_dependencies();
the wrappers below defer to them at request time so routers can be imported
before the app is configured.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from foodapp.checkout.errors import BackendError

logger = logging.getLogger(__name__)

# Rate limiter shared by the app and the routers
limiter = Limiter(key_func=get_remote_address)

_backend_dependency = None
_token_dependency = None
_optional_token_dependency = None


def set_dependencies(backend_dependency, token_dependency, optional_token_dependency):
    """Set the actual dependencies from main module."""
    global _backend_dependency, _token_dependency, _optional_token_dependency
    _backend_dependency = backend_dependency
    _token_dependency = token_dependency
    _optional_token_dependency = optional_token_dependency


def backend_dep():
    """Backend dependency wrapper that defers to the injected dependency at runtime."""
    if _backend_dependency is None:
        raise RuntimeError("Backend dependency not configured. Did you call set_dependencies()?")
    return _backend_dependency()


def token_dep(authorization: str = Header(None)) -> Dict[str, Any]:
    """Auth dependency wrapper that defers to the injected dependency at runtime."""
    if _token_dependency is None:
        raise RuntimeError("Token dependency not configured. Did you call set_dependencies()?")
    return _token_dependency(authorization)


def optional_user_dep(authorization: str = Header(None)) -> Optional[Dict[str, Any]]:
    """Like token_dep, but anonymous callers get None instead of a 401."""
    if _optional_token_dependency is None:
        raise RuntimeError("Token dependency not configured. Did you call set_dependencies()?")
    return _optional_token_dependency(authorization)


def normalize_role(role: Any) -> str:
    return "_".join(str(role or "").strip().lower().split())


def admin_dep(
    user: Dict[str, Any] = Depends(token_dep),
    backend=Depends(backend_dep),
) -> Dict[str, Any]:
    """Require profiles.role == admin for the caller."""
    try:
        role = backend.get_profile_role(user["user_id"])
    except BackendError as e:
        logger.error(f"Profile read failed for {user['user_id']}: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Profile read failed. Check profiles SELECT policy."
        )

    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Profile not found for this user."
        )
    if normalize_role(role) != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'Not authorized. Your role is "{role}".'
        )
    return user
