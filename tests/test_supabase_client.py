import pytest
from unittest.mock import MagicMock

from core import supabase_client
from core.config import settings


@pytest.fixture
def create_client(monkeypatch):
    """Fresh client cache and a create_client that records the key it was given."""
    mock = MagicMock(side_effect=lambda url, key: MagicMock(name=f"client[{key}]", key=key))
    monkeypatch.setattr(supabase_client, "_clients", {})
    monkeypatch.setattr(supabase_client, "create_client", mock)
    monkeypatch.setattr(settings, "SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setattr(settings, "SUPABASE_KEY", "anon-key")
    monkeypatch.setattr(settings, "SUPABASE_SERVICE_KEY", "service-key")
    return mock


@pytest.mark.asyncio
async def test_anon_client_is_created_once(create_client):
    first = await supabase_client.get_supabase_client()
    second = await supabase_client.get_supabase_client()

    assert first is second
    assert first.key == "anon-key"
    create_client.assert_called_once_with("https://proj.supabase.co", "anon-key")


@pytest.mark.asyncio
async def test_admin_client_uses_service_key(create_client):
    anon = await supabase_client.get_supabase_client()
    admin = await supabase_client.get_admin_client()

    assert admin is not anon
    assert admin.key == "service-key"


@pytest.mark.asyncio
async def test_missing_service_key_only_breaks_admin_client(create_client, monkeypatch):
    monkeypatch.setattr(settings, "SUPABASE_SERVICE_KEY", None)

    assert (await supabase_client.get_supabase_client()).key == "anon-key"
    with pytest.raises(ValueError, match="service role key not configured"):
        await supabase_client.get_admin_client()


@pytest.mark.asyncio
async def test_client_creation_failure_is_wrapped(create_client):
    create_client.side_effect = Exception("Invalid API key")

    with pytest.raises(RuntimeError, match="Invalid API key"):
        await supabase_client.get_supabase_client()
