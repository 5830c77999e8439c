import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock

from supabase import PostgrestAPIError

from core.errors import MetadataStoreError
from services.save_manager.app import crud


@pytest.fixture
def supabase():
    return MagicMock()


@pytest.mark.asyncio
async def test_get_save_locations_returns_stored_list(supabase):
    query = supabase.table.return_value.select.return_value.eq.return_value.eq.return_value
    query.limit.return_value.maybe_single.return_value.execute.return_value = SimpleNamespace(
        data={"locations": ["C:/A", "D:/B"]}
    )

    result = await crud.get_save_locations(supabase, "user-1", "a.sav")

    assert result == ["C:/A", "D:/B"]
    supabase.table.assert_called_once_with("save_locations")
    supabase.table.return_value.select.return_value.eq.assert_called_once_with("user_id", "user-1")
    supabase.table.return_value.select.return_value.eq.return_value.eq.assert_called_once_with("file_name", "a.sav")


@pytest.mark.asyncio
async def test_get_save_locations_missing_row(supabase):
    query = supabase.table.return_value.select.return_value.eq.return_value.eq.return_value
    query.limit.return_value.maybe_single.return_value.execute.return_value = None

    assert await crud.get_save_locations(supabase, "user-1", "a.sav") is None


@pytest.mark.asyncio
async def test_upsert_save_locations_conflicts_on_owner_and_name(supabase):
    await crud.upsert_save_locations(supabase, "user-1", "a.sav", ["C:/A"])

    supabase.table.return_value.upsert.assert_called_once_with(
        {"user_id": "user-1", "file_name": "a.sav", "locations": ["C:/A"]},
        on_conflict="user_id,file_name",
    )
    supabase.table.return_value.upsert.return_value.execute.assert_called_once()


@pytest.mark.asyncio
async def test_delete_save_locations_filters_by_owner_and_name(supabase):
    await crud.delete_save_locations(supabase, "user-1", "a.sav")

    delete = supabase.table.return_value.delete.return_value
    delete.eq.assert_called_once_with("user_id", "user-1")
    delete.eq.return_value.eq.assert_called_once_with("file_name", "a.sav")


@pytest.mark.asyncio
async def test_postgrest_error_becomes_metadata_store_error(supabase):
    supabase.table.return_value.upsert.return_value.execute.side_effect = PostgrestAPIError(
        {"message": "permission denied for table save_locations", "code": "42501", "hint": None, "details": None}
    )

    with pytest.raises(MetadataStoreError, match="permission denied") as exc_info:
        await crud.upsert_save_locations(supabase, "user-1", "a.sav", ["C:/A"])
    assert exc_info.value.status_code == 502
