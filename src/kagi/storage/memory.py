"""プロセス内メモリのキー・バリューストア。"""

from __future__ import annotations

from kagi.storage.base import KeyValueStore


class MemoryStore(KeyValueStore):
    """プロセスが生きている間だけ値を保持する。"""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def keys(self) -> list[str]:
        return list(self._values)
