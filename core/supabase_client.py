# core/supabase_client.py
"""
Supabase clients for the save manager.

The anon client carries the signed-in player's session and backs the storage
bucket, the save_locations table and auth. The service role client bypasses
row level security, so only account deletion (`auth.admin.delete_user`)
asks for it, and it is created on first use.
"""
import asyncio
from typing import Any, Dict

from supabase import create_client

from core.config import settings, logger as core_logger

logger = core_logger.getChild("Supabase")

ANON = "anon"
SERVICE_ROLE = "service role"

_clients: Dict[str, Any] = {}
_init_lock = asyncio.Lock()


async def _get_client(role: str) -> Any:
    if role in _clients:
        return _clients[role]
    async with _init_lock:
        if role not in _clients:
            key = settings.SUPABASE_SERVICE_KEY if role == SERVICE_ROLE else settings.SUPABASE_KEY
            if not settings.SUPABASE_URL or not key:
                logger.error(f"Supabase URL or {role} key not configured. Cannot create client.")
                raise ValueError(f"Supabase URL or {role} key not configured")
            try:
                # create_client is synchronous
                _clients[role] = await asyncio.to_thread(create_client, settings.SUPABASE_URL, key)
            except Exception as e:
                logger.error(f"Failed to initialize Supabase {role} client: {e}", exc_info=True)
                raise RuntimeError(f"Failed to initialize Supabase {role} client: {e}") from e
            logger.info(f"Supabase {role} client initialized.")
    return _clients[role]


async def get_supabase_client() -> Any:
    """Client for the signed-in user's session."""
    return await _get_client(ANON)


async def get_admin_client() -> Any:
    """Service role client used to delete the auth identity."""
    return await _get_client(SERVICE_ROLE)
