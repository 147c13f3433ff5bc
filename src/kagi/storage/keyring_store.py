"""OSキーリングを使う永続ストア。"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, TypeVar
import warnings

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from kagi.storage.base import KeyValueStore
from kagi.storage.file_store import JsonFileStore

T = TypeVar("T")


class KeyringStore(KeyValueStore):
    """資格情報をOSキーリングに保存する。

    キーリングのバックエンドが使えないと分かった時点で、以降の操作は
    ``JsonFileStore`` に切り替える。
    """

    def __init__(self, keyring_service: str = "kagi", fallback_path: Path | None = None) -> None:
        """KeyringStoreを初期化する。

        Args:
            keyring_service: keyringのサービス名。キーはストレージキー（例: Auth:User:<apiKey>:<name>）。
            fallback_path: keyringが使えない場合の保存ファイル。
        """

        self._keyring_service = keyring_service
        self._fallback = JsonFileStore(fallback_path or Path.home() / ".kagi" / "storage.json")
        self._keyring_available = True

    @property
    def using_keyring(self) -> bool:
        return self._keyring_available

    def get(self, key: str) -> str | None:
        return self._dispatch(
            lambda: keyring.get_password(self._keyring_service, key),
            lambda: self._fallback.get(key),
        )

    def set(self, key: str, value: str) -> None:
        self._dispatch(
            lambda: keyring.set_password(self._keyring_service, key, value),
            lambda: self._fallback.set(key, value),
        )

    def remove(self, key: str) -> None:
        def delete() -> None:
            try:
                keyring.delete_password(self._keyring_service, key)
            except PasswordDeleteError:
                pass

        self._dispatch(delete, lambda: self._fallback.remove(key))

    def _dispatch(self, on_keyring: Callable[[], T], on_file: Callable[[], T]) -> T:
        if self._keyring_available:
            try:
                return on_keyring()
            except KeyringError as exc:
                warnings.warn(
                    f"keyringが利用できないため、{self._fallback.path} に保存します: {exc}",
                    RuntimeWarning,
                    stacklevel=3,
                )
                self._keyring_available = False
        return on_file()
