"""JSONファイルを使うキー・バリューストア。"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile

from kagi.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


class JsonFileStore(KeyValueStore):
    """1つのJSONファイルに全キーを保存する。

    ファイルは所有者のみ読み書き可能（0600）とし、書き込みは一時ファイルの
    置き換えで行うため、途中で失敗しても元の内容が残る。
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        entries = self._load()
        entries[key] = value
        self._save(entries)

    def remove(self, key: str) -> None:
        entries = self._load()
        if entries.pop(key, None) is not None:
            self._save(entries)

    def _load(self) -> dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("保存ファイル %s を読み込めません。空として扱います: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("保存ファイル %s の形式が不正です。空として扱います", self._path)
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _save(self, entries: dict[str, str]) -> None:
        self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        # mkstemp は 0600 でファイルを作成する
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                json.dump(entries, file, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
