"""ストレージアダプタの公開API。"""

from __future__ import annotations

from kagi.storage.base import KeyValueStore, StorageProvider
from kagi.storage.file_store import JsonFileStore
from kagi.storage.keyring_store import KeyringStore
from kagi.storage.memory import MemoryStore

__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "KeyringStore",
    "MemoryStore",
    "StorageProvider",
]
