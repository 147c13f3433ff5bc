"""認証済み資格情報の保持・永続化・変更通知。"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from kagi.auth.listeners import ListenerRegistry
from kagi.identity.client import IdentityServiceClient
from kagi.models import Credential, TokenDetails
from kagi.storage.base import KeyValueStore

if TYPE_CHECKING:
    from kagi.auth.token_manager import TokenManager

logger = logging.getLogger(__name__)

USER_STORAGE_KEY_PREFIX = "Auth:User"


class CredentialStore:
    """資格情報を永続ストアへ保存し、保存と同時に購読者へ通知する。

    永続ストアが正であり、メモリ上の値は構築時の ``load`` でのみ読み直す。
    """

    def __init__(
        self,
        storage: KeyValueStore,
        scope: str,
        listeners: ListenerRegistry,
        client: IdentityServiceClient,
    ) -> None:
        """CredentialStoreを初期化する。

        Args:
            storage: 永続ストア。
            scope: インスタンス識別子（apiKey:name）。
            listeners: 変更通知先。
            client: プロフィール取得に使う Identity Service クライアント。
        """

        self._storage = storage
        self._key = f"{USER_STORAGE_KEY_PREFIX}:{scope}"
        self._listeners = listeners
        self._client = client
        self._current: Credential | None = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def current(self) -> Credential | None:
        return self._current

    def load(self) -> Credential | None:
        """永続ストアから資格情報を読み込む（通知はしない）。

        壊れたレコードは存在しないものとして扱う。
        """

        raw = self._storage.get(self._key)
        if raw is None:
            self._current = None
            return None

        try:
            self._current = Credential.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("保存済みの資格情報を読み込めません（%s）。未認証として扱います: %s", self._key, exc)
            self._current = None
        return self._current

    def persist(self, credential: Credential) -> None:
        """資格情報を丸ごと保存し、メモリ上の値を置き換えて購読者へ通知する。"""

        self._storage.set(self._key, json.dumps(credential.to_dict(), ensure_ascii=False))
        self._current = credential
        self._listeners.notify_all(credential)

    def clear(self) -> None:
        """保存済みの資格情報を削除し、未認証として通知する。"""

        self._storage.remove(self._key)
        self._current = None
        self._listeners.notify_all(None)

    async def fetch_profile(
        self,
        token_manager: TokenManager,
        token_details: TokenDetails | None = None,
    ) -> Credential:
        """最新のプロフィールを取得して保存する。

        Args:
            token_manager: 鮮度確認に使うトークンマネージャ。
            token_details: 使用するトークン。未指定時は現在の資格情報のトークン。

        Returns:
            取得した資格情報。保存済みの資格情報から再取得している間に
            サインアウトや別のサインインがあった場合は、保存せずに返す。

        Raises:
            RemoteServiceError: lookup に失敗した場合。
            TokenRefreshError: トークン更新に失敗した場合。
            RuntimeError: トークンも資格情報も無い場合。
        """

        started_from: Credential | None = None
        if token_details is None:
            # 明示されたトークンはそのまま使う
            await token_manager.ensure_fresh()
            if self._current is None:
                raise RuntimeError("プロフィール取得に使うトークンがありません。")
            started_from = self._current
            token_details = started_from.token_details

        users = await self._client.lookup_user(token_details.id_token)
        credential = Credential.from_lookup(users[0], token_details)
        if started_from is not None and self._current is not started_from:
            # 取得中にサインアウトまたは再サインインされた
            logger.debug("Credential replaced during profile refresh; not persisting")
            return credential
        self.persist(credential)
        return credential
