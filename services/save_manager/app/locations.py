# services/save_manager/app/locations.py
from typing import Any, Dict, Iterable, List, Optional

from core.config import logger as core_logger
from core.models import User
from . import crud

logger = core_logger.getChild("SaveManager").getChild("Locations")


class SaveLocationSynchronizer:
    """
    In-memory map of file name -> save locations, written through to the
    metadata store when `reconcile()` is called.

    Every list in memory holds at least one entry (possibly ""). Edits queue the
    file name; `reconcile()` drains the queue in edit order. Writes are full
    overwrites with no conflict detection: the last writer wins.
    """

    def __init__(self, supabase: Any):
        self._supabase = supabase
        self.locations: Dict[str, List[str]] = {}
        self._changed: Dict[str, None] = {} # ordered set of file names awaiting reconcile

    @property
    def pending_changes(self) -> List[str]:
        return list(self._changed)

    async def load_locations(self, user: User, file_names: Iterable[str]) -> Dict[str, List[str]]:
        """Replaces the map with what is stored for `file_names`; missing rows become [""]."""
        loaded: Dict[str, List[str]] = {}
        for name in file_names:
            stored = await crud.get_save_locations(self._supabase, user.id, name)
            loaded[name] = stored if stored else [""]
        self.locations = loaded
        self._changed.clear()
        logger.info(f"[{user.id}] Loaded save locations for {len(loaded)} files.")
        return loaded

    def get(self, file_name: str) -> List[str]:
        return list(self.locations.get(file_name, [""]))

    def _mark(self, file_name: str) -> None:
        self._changed.pop(file_name, None)
        self._changed[file_name] = None

    def set_location(self, file_name: str, index: int, value: str) -> List[str]:
        """Replaces an existing entry. Indexing past the end raises IndexError."""
        entries = self.locations.setdefault(file_name, [""])
        if index < 0 or index >= len(entries):
            raise IndexError(f"No save location #{index} for {file_name}.")
        entries[index] = value
        self._mark(file_name)
        return list(entries)

    def add_location(self, file_name: str) -> List[str]:
        entries = self.locations.setdefault(file_name, [""])
        entries.append("")
        self._mark(file_name)
        return list(entries)

    def remove_location(self, file_name: str, index: int) -> List[str]:
        entries = self.locations.setdefault(file_name, [""])
        if index < 0 or index >= len(entries):
            raise IndexError(f"No save location #{index} for {file_name}.")
        del entries[index]
        if not entries:
            entries.append("")
        self._mark(file_name)
        return list(entries)

    def forget(self, file_name: str) -> None:
        """Drops a file from the map, e.g. after it was deleted."""
        self.locations.pop(file_name, None)
        self._changed.pop(file_name, None)

    async def discard(self, user: User, file_name: str) -> None:
        """Forgets a deleted file and removes its stored row."""
        self.forget(file_name)
        await crud.delete_save_locations(self._supabase, user.id, file_name)

    async def move(self, user: User, old_name: str, new_name: str) -> List[str]:
        """Carries a renamed file's locations over to the new name and clears the old row."""
        entries = self.locations.pop(old_name, None) or [""]
        self._changed.pop(old_name, None)
        self.locations[new_name] = entries
        self._mark(new_name)
        await crud.delete_save_locations(self._supabase, user.id, old_name)
        await self.reconcile(user)
        return list(entries)

    async def reconcile(self, user: User) -> Dict[str, Optional[List[str]]]:
        """
        Writes every queued file: non-blank entries are stored, an all-blank
        list deletes the row. Returns what was written (None for deletions).
        A failing write stays queued and its error propagates.
        """
        written: Dict[str, Optional[List[str]]] = {}
        for file_name in list(self._changed):
            filtered = [loc for loc in self.locations.get(file_name, [""]) if loc.strip() != ""]
            if filtered:
                await crud.upsert_save_locations(self._supabase, user.id, file_name, filtered)
                written[file_name] = filtered
            else:
                await crud.delete_save_locations(self._supabase, user.id, file_name)
                written[file_name] = None
            self._changed.pop(file_name, None)
        if written:
            logger.debug(f"[{user.id}] Reconciled save locations for {len(written)} files.")
        return written
