from __future__ import annotations

from .store import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
]
