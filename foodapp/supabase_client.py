"""
Supabase client for the checkout backend.
Used by the data-store adapter and the CLI.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

_client: Optional[Client] = None


def get_supabase() -> Optional[Client]:
    """Get or create the Supabase client; None when credentials are not set."""
    global _client
    if _client is not None:
        return _client
    if not (SUPABASE_URL and SUPABASE_KEY):
        logger.warning("SUPABASE_URL or SUPABASE_KEY not set. Supabase client not initialized.")
        return None
    try:
        _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        return None
    return _client
