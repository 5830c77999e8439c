# services/save_manager/app/crud.py
import asyncio
from core.config import settings, logger as core_logger
from core.errors import MetadataStoreError
from typing import Any, List, Optional
from supabase import PostgrestAPIError

logger = core_logger.getChild("SaveManager").getChild("CRUD")

USER_ID_COLUMN = "user_id"
FILE_NAME_COLUMN = "file_name"
LOCATIONS_COLUMN = "locations"


async def get_save_locations(supabase: Any, user_id: str, file_name: str) -> Optional[List[str]]:
    """Returns the persisted locations for one file, or None when no row exists."""
    job_prefix = f"[{user_id}/{file_name}]"
    try:
        def db_call():
            return supabase.table(settings.SAVE_LOCATIONS_TABLE)\
                .select(LOCATIONS_COLUMN)\
                .eq(USER_ID_COLUMN, user_id)\
                .eq(FILE_NAME_COLUMN, file_name)\
                .limit(1)\
                .maybe_single()\
                .execute()

        response = await asyncio.to_thread(db_call)

        if response and hasattr(response, 'data') and response.data:
            locations = response.data.get(LOCATIONS_COLUMN)
            logger.debug(f"{job_prefix} Retrieved {len(locations or [])} save locations.")
            return list(locations) if locations is not None else None
        logger.debug(f"{job_prefix} No save locations stored.")
        return None

    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase API error retrieving save locations: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise MetadataStoreError(f"Failed to load save locations for {file_name}: {e.message}") from e


async def upsert_save_locations(supabase: Any, user_id: str, file_name: str, locations: List[str]) -> None:
    """Overwrites the stored list for one file."""
    job_prefix = f"[{user_id}/{file_name}]"
    row = {USER_ID_COLUMN: user_id, FILE_NAME_COLUMN: file_name, LOCATIONS_COLUMN: locations}
    try:
        def db_call():
            return supabase.table(settings.SAVE_LOCATIONS_TABLE)\
                .upsert(row, on_conflict=f"{USER_ID_COLUMN},{FILE_NAME_COLUMN}")\
                .execute()

        await asyncio.to_thread(db_call)
        logger.info(f"{job_prefix} Stored {len(locations)} save locations.")

    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase API error storing save locations: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise MetadataStoreError(f"Failed to save locations for {file_name}: {e.message}") from e


async def delete_save_locations(supabase: Any, user_id: str, file_name: str) -> None:
    """Removes the row for one file. Deleting a missing row is not an error."""
    job_prefix = f"[{user_id}/{file_name}]"
    try:
        def db_call():
            return supabase.table(settings.SAVE_LOCATIONS_TABLE)\
                .delete()\
                .eq(USER_ID_COLUMN, user_id)\
                .eq(FILE_NAME_COLUMN, file_name)\
                .execute()

        await asyncio.to_thread(db_call)
        logger.info(f"{job_prefix} Cleared save locations.")

    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase API error deleting save locations: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise MetadataStoreError(f"Failed to clear save locations for {file_name}: {e.message}") from e
