"""ストレージ基盤。

資格情報とセッションIDを保存するキー・バリューストアの共通インターフェースを定義する。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class KeyValueStore(ABC):
    """文字列キー・文字列値のストア。"""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """値を取得する。存在しない場合はNone。"""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """値を保存する。"""

    @abstractmethod
    def remove(self, key: str) -> None:
        """値を削除する。存在しない場合は何もしない。"""


@dataclass(slots=True)
class StorageProvider:
    """永続ストアとタブ単位の一時ストアの組。

    Attributes:
        durable: ブラウザ再起動後も残るストア（資格情報）。
        ephemeral: リダイレクト間のみ残るストア（セッションID）。
    """

    durable: KeyValueStore
    ephemeral: KeyValueStore

    @classmethod
    def default(cls) -> StorageProvider:
        """OSキーリングを永続ストア、プロセス内メモリを一時ストアとする構成を返す。"""

        from kagi.storage.keyring_store import KeyringStore
        from kagi.storage.memory import MemoryStore

        return cls(durable=KeyringStore(), ephemeral=MemoryStore())
