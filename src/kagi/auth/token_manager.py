"""トークンの失効管理と更新リクエストの集約。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable

from kagi.errors import ErrorCode, RemoteServiceError, TokenRefreshError, create_auth_error
from kagi.identity.client import IdentityServiceClient, TokenResponse
from kagi.models import Credential, TokenDetails

if TYPE_CHECKING:
    from kagi.auth.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class TokenManager:
    """トークンの更新要否を判断し、更新リクエストを同時に1件までに抑える。"""

    def __init__(
        self,
        client: IdentityServiceClient,
        store: CredentialStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """TokenManagerを初期化する。

        Args:
            client: Identity Service クライアント。
            store: 更新結果を永続化する資格情報ストア。
            clock: 現在時刻（エポック秒）を返す関数。
        """

        self._client = client
        self._store = store
        self._clock = clock
        self._refresh_task: asyncio.Task[TokenDetails | None] | None = None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    def compute_expiry(self, expires_in: float) -> float:
        """相対秒数を受信時点の絶対時刻に変換する。"""

        return self._clock() + float(expires_in)

    def to_token_details(self, response: TokenResponse) -> TokenDetails:
        return TokenDetails(
            id_token=response.id_token,
            refresh_token=response.refresh_token,
            expires_at=self.compute_expiry(response.expires_in),
        )

    async def ensure_fresh(self) -> TokenDetails | None:
        """必要ならトークンを更新し、有効なトークン情報を返す。

        更新中に呼ばれた場合は新たにリクエストせず、進行中の更新結果を待つ。

        Returns:
            現在のトークン情報。資格情報が無い場合はNone。

        Raises:
            TokenRefreshError: 更新に失敗した場合（待機中の全呼び出し元に伝播する）。
        """

        credential = self._store.current
        if credential is None:
            return None
        if not credential.token_details.is_expired(self._clock()):
            return credential.token_details

        if self._refresh_task is None:
            logger.debug("Token expired; starting refresh for user %s", credential.user_id)
            task = asyncio.create_task(self._refresh(credential))
            task.add_done_callback(self._clear_refresh_task)
            self._refresh_task = task

        return await asyncio.shield(self._refresh_task)

    def _clear_refresh_task(self, task: asyncio.Task[TokenDetails | None]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # 待機者がいなくても結果を取り出しておく
        if not task.cancelled():
            task.exception()

    async def _refresh(self, credential: Credential) -> TokenDetails | None:
        try:
            response = await self._client.refresh_token(credential.token_details.refresh_token)
        except RemoteServiceError as exc:
            logger.warning("Token refresh failed: %s", exc.error.message)
            raise TokenRefreshError(
                create_auth_error(
                    ErrorCode.AUTH_TOKEN_REFRESH_FAILED,
                    f"トークンの更新に失敗しました: {exc.error.message}",
                    details={"user_id": credential.user_id, "cause": exc.error.code},
                )
            ) from exc

        token_details = self.to_token_details(response)
        latest = self._store.current
        if latest is not credential:
            # 更新中にサインアウトまたは再サインインされた場合は、新しいトークンを捨てる
            logger.debug("Credential replaced during refresh; discarding new tokens")
            return latest.token_details if latest is not None else None

        self._store.persist(credential.with_token_details(token_details))
        return token_details
