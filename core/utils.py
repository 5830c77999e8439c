"""
Core Utility Functions shared by the save manager service.
"""
from typing import Iterable, List

from core.models import SaveFile


def format_bytes(size: int) -> str:
    """Human readable size, e.g. 1536 -> '1.5 KB'."""
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    if value < 1024:
        return f"{value:.1f} KB"
    return f"{value / 1024:.1f} MB"


def filter_save_files(files: Iterable[SaveFile], query: str) -> List[SaveFile]:
    """Case-insensitive match of `query` against each file's label or name."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(files)
    return [f for f in files if needle in f.label.lower() or needle in f.name.lower()]
