"""Process-wide cached Supabase connection.

The client is created lazily on first use and shared for the lifetime of the
process. Creation is guarded by a lock so that concurrent first callers wait
on a single connection attempt instead of each creating their own client.
"""
import logging
import threading
from typing import Optional
from supabase import create_client, Client

from config import SUPABASE_URL, SUPABASE_KEY
from errors import PersistenceError

logger = logging.getLogger(__name__)

_client: Optional[Client] = None
_lock = threading.Lock()


def get_client(supabase_url: Optional[str] = None, supabase_key: Optional[str] = None) -> Client:
    """
    Return the shared Supabase client, connecting on first use.

    Args:
        supabase_url: Supabase project URL (defaults to SUPABASE_URL)
        supabase_key: Supabase API key (defaults to SUPABASE_KEY)

    Returns:
        The cached Supabase client

    Raises:
        ValueError: If credentials are missing
        PersistenceError: If the client cannot be created
    """
    global _client

    if _client is not None:
        logger.debug("Using cached Supabase connection")
        return _client

    with _lock:
        # Another caller may have connected while we waited for the lock
        if _client is None:
            url = supabase_url or SUPABASE_URL
            key = supabase_key or SUPABASE_KEY
            if not url or not key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

            logger.info(f"Connecting to Supabase: {url}")
            try:
                _client = create_client(url, key)
            except Exception as e:
                # Not cached, the next caller retries
                logger.error(f"Supabase connection error: {e}", exc_info=True)
                raise PersistenceError(
                    f"Could not connect to Supabase: {e}",
                    code="CONNECTION_ERROR",
                    details={"url": url}
                ) from e
            logger.info("Supabase connected successfully")

    return _client


def reset_client() -> None:
    """Drop the cached client so the next call reconnects."""
    global _client
    with _lock:
        _client = None
