import pytest
from typing import Dict, List, Optional, Tuple

from core.errors import StorageError, TransferFailed
from core.models import PendingFile, SaveFile, User


class FakeObjectStore:
    """In-memory stand-in for SaveObjectStore keyed by object path."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, Dict[str, str], str]] = {}
        self.fail_uploads: set = set() # object paths whose resumable upload fails
        self.fail_simple_uploads: set = set()
        self.fail_removes: set = set()
        self.fail_list = False
        self.fail_exists: set = set()
        self.chunk_size = 4
        self.calls: List[tuple] = []

    def put(self, path: str, content: bytes, label: str = "", content_type: str = "application/octet-stream"):
        self.objects[path] = (content, {"label": label}, content_type)

    async def list_files(self, user_id: str) -> List[SaveFile]:
        self.calls.append(("list", user_id))
        if self.fail_list:
            raise StorageError("The resource was not found")
        prefix = f"{user_id}/"
        return [
            await self.get_file(user_id, path[len(prefix):])
            for path in sorted(self.objects)
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    async def get_file(self, user_id: str, name: str, listing: Optional[dict] = None) -> SaveFile:
        path = f"{user_id}/{name}"
        if path not in self.objects:
            raise StorageError("Object not found")
        content, meta, content_type = self.objects[path]
        return SaveFile(name=name, size=len(content), label=meta.get("label", ""), content_type=content_type)

    async def list_names(self, user_id: str) -> List[str]:
        return [f.name for f in await self.list_files(user_id)]

    async def exists(self, path: str) -> bool:
        if path in self.fail_exists:
            raise StorageError("Internal Server Error")
        return path in self.objects

    async def upload(self, path, content, content_type="application/octet-stream", metadata=None):
        self.calls.append(("upload", path))
        if path in self.fail_simple_uploads:
            raise StorageError("upload refused")
        self.objects[path] = (content, dict(metadata or {}), content_type)

    async def upload_resumable(self, path, content, *, access_token, content_type="application/octet-stream",
                               metadata=None, on_progress=None):
        self.calls.append(("upload_resumable", path))
        total = len(content)
        if on_progress:
            on_progress(0, total)
        if path in self.fail_uploads:
            if on_progress and total:
                on_progress(min(self.chunk_size, total), total)
            raise TransferFailed("Network connection lost")
        offset = 0
        while offset < total:
            offset = min(offset + self.chunk_size, total)
            if on_progress:
                on_progress(offset, total)
        self.objects[path] = (content, dict(metadata or {}), content_type)

    async def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise StorageError("Object not found")
        return self.objects[path][0]

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        if path not in self.objects:
            raise StorageError("Object not found")
        return f"https://example.supabase.co/storage/v1/object/sign/game-saves/{path}?token=t&ttl={expires_in}"

    async def remove(self, paths: List[str]) -> List[str]:
        self.calls.append(("remove", tuple(paths)))
        removed = []
        for path in paths:
            if path in self.fail_removes:
                raise StorageError("remove refused")
            if self.objects.pop(path, None) is not None:
                removed.append(path)
        return removed


class FakeLocationRows:
    """Dict-backed replacement for the crud module's save_locations functions."""

    def __init__(self):
        self.rows: Dict[Tuple[str, str], List[str]] = {}
        self.writes: List[tuple] = []
        self.fail_writes = False

    async def get_save_locations(self, supabase, user_id, file_name):
        rows = self.rows.get((user_id, file_name))
        return list(rows) if rows is not None else None

    async def upsert_save_locations(self, supabase, user_id, file_name, locations):
        if self.fail_writes:
            from core.errors import MetadataStoreError
            raise MetadataStoreError(f"Failed to save locations for {file_name}: timeout")
        self.writes.append(("upsert", file_name, list(locations)))
        self.rows[(user_id, file_name)] = list(locations)

    async def delete_save_locations(self, supabase, user_id, file_name):
        self.writes.append(("delete", file_name))
        self.rows.pop((user_id, file_name), None)


MIB = 1024 * 1024


def make_pending(name: str, size: int, content: Optional[bytes] = None) -> PendingFile:
    """PendingFile whose declared size can exceed its (small) test content."""
    return PendingFile(name=name, size=size, content=content if content is not None else b"x" * min(size, 16))


@pytest.fixture
def user() -> User:
    return User(id="user-123", display_name="Ada", email="ada@example.com")


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def location_rows(monkeypatch) -> FakeLocationRows:
    rows = FakeLocationRows()
    from services.save_manager.app import crud
    monkeypatch.setattr(crud, "get_save_locations", rows.get_save_locations)
    monkeypatch.setattr(crud, "upsert_save_locations", rows.upsert_save_locations)
    monkeypatch.setattr(crud, "delete_save_locations", rows.delete_save_locations)
    return rows
