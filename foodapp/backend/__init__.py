"""
Data-store adapters.

get_backend() returns the process-wide adapter: Supabase when credentials are
configured, otherwise an in-memory store. Tests swap it with set_backend().
"""

import logging
from typing import Optional

from .memory_adapter import InMemoryBackend
from .port import ORDER_TABLES, STORE_TABLES, CheckoutBackend
from .supabase_adapter import SupabaseBackend

logger = logging.getLogger(__name__)

_backend: Optional[CheckoutBackend] = None


def get_backend() -> CheckoutBackend:
    """Get or create the data-store adapter."""
    global _backend
    if _backend is None:
        from foodapp.supabase_client import get_supabase

        client = get_supabase()
        if client is not None:
            _backend = SupabaseBackend(client)
        else:
            logger.warning("Supabase not configured, using in-memory backend")
            _backend = InMemoryBackend()
    return _backend


def set_backend(backend: CheckoutBackend) -> None:
    global _backend
    _backend = backend


def reset_backend() -> None:
    global _backend
    _backend = None


__all__ = [
    "CheckoutBackend",
    "SupabaseBackend",
    "InMemoryBackend",
    "ORDER_TABLES",
    "STORE_TABLES",
    "get_backend",
    "set_backend",
    "reset_backend",
]
