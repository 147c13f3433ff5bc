"""AuthInstance - サインインと資格情報管理の公開窓口。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Mapping

from kagi.auth.credential_store import CredentialStore
from kagi.auth.flow import SignInFlowController
from kagi.auth.listeners import Listener, ListenerRegistry
from kagi.auth.token_manager import TokenManager
from kagi.config.settings import AuthConfig, KagiSettings
from kagi.identity.client import IdentityServiceClient
from kagi.models import Credential, FlowState
from kagi.navigator import Navigator, WebbrowserNavigator
from kagi.storage.base import StorageProvider

logger = logging.getLogger(__name__)


class AuthInstance:
    """プロバイダサインインと資格情報のライフサイクルを管理する。

    ストレージ・ナビゲータ・Identity Service クライアントは構築時に注入する。
    同じ (name, apiKey) のインスタンスは永続ストアを共有する。

    Example:
        auth = AuthInstance(
            {"apiKey": "...", "providers": ["google.com"], "redirectURL": "https://app/cb"},
            storage=StorageProvider.default(),
            navigator=navigator,
        )
        unsubscribe = auth.subscribe(print)
        context = await auth.handle_post_sign_in_redirect()
    """

    def __init__(
        self,
        config: AuthConfig | Mapping[str, Any],
        *,
        storage: StorageProvider | None = None,
        navigator: Navigator | None = None,
        client: IdentityServiceClient | None = None,
        settings: KagiSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """AuthInstanceを初期化する。

        保存済みの資格情報があれば購読者へ通知し、実行中のイベントループがあれば
        バックグラウンドでプロフィールを再取得する。

        Args:
            config: 構築設定（AuthConfig または辞書）。
            storage: 永続ストアと一時ストア。
            navigator: ページ遷移の実装。
            client: Identity Service クライアント。
            settings: クライアントを内部生成する際の接続設定。
            clock: 現在時刻（エポック秒）を返す関数。

        Raises:
            ConfigurationError: 設定が不正な場合。
        """

        self._config = AuthConfig.build(config)
        self._storage = storage or StorageProvider.default()
        self._navigator = navigator or WebbrowserNavigator.for_redirect_url(self._config.redirect_url)
        self._owns_client = client is None
        self._client = client or IdentityServiceClient(self._config.api_key, settings=settings)

        self._listeners = ListenerRegistry()
        self._credentials = CredentialStore(
            self._storage.durable,
            self._config.storage_scope,
            self._listeners,
            self._client,
        )
        self._token_manager = TokenManager(self._client, self._credentials, clock=clock)
        self._flow = SignInFlowController(
            self._config,
            self._storage.ephemeral,
            self._navigator,
            self._client,
            self._credentials,
            self._token_manager,
        )
        self.restore_task: asyncio.Task[Credential] | None = None

        logger.debug(
            "AuthInstance created: name=%s apiKey=%s providers=%s",
            self._config.name,
            self._config.masked_api_key,
            list(self._config.providers.provider_ids),
        )

        if self._credentials.load() is not None:
            self._listeners.notify_all(self._credentials.current)
            self._schedule_restore()

    @property
    def config(self) -> AuthConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def current_user(self) -> Credential | None:
        """現在の資格情報（未認証ならNone）"""
        return self._credentials.current

    @property
    def flow_state(self) -> FlowState:
        return self._flow.state

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """資格情報の変化を購読する。

        未認証の場合は登録直後に ``callback(None)`` が呼ばれる。

        Returns:
            登録解除関数。
        """

        return self._listeners.subscribe(callback, self._credentials.current)

    async def sign_in_with_provider(
        self,
        provider_or_options: str | Mapping[str, Any],
        context: Any = None,
    ) -> None:
        """プロバイダの認可画面へリダイレクトする。"""

        await self._flow.sign_in_with_provider(provider_or_options, context)

    async def handle_post_sign_in_redirect(self) -> Any:
        """リダイレクト先のページで呼び出し、サインインを完了させる。"""

        return await self._flow.handle_post_sign_in_redirect()

    async def refresh_profile(self) -> Credential:
        """保存済みのトークンで最新のプロフィールを取得する。"""

        return await self._credentials.fetch_profile(self._token_manager)

    async def get_id_token(self) -> str | None:
        """有効なIDトークンを返す。未認証ならNone。

        Raises:
            TokenRefreshError: 失効済みトークンの更新に失敗した場合。
        """

        token_details = await self._token_manager.ensure_fresh()
        if token_details is None:
            return None
        return token_details.id_token

    def sign_out(self) -> None:
        """資格情報を破棄し、購読者へ未認証を通知する。"""

        self._credentials.clear()
        self._flow.reset()
        logger.info("Signed out (%s)", self._config.name)

    async def aclose(self) -> None:
        """実行中の復元処理を止め、内部で生成したクライアントを閉じる。"""

        if self.restore_task is not None and not self.restore_task.done():
            self.restore_task.cancel()
        if isinstance(self._navigator, WebbrowserNavigator):
            self._navigator.close()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AuthInstance:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _schedule_restore(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; call refresh_profile() to update the stored profile")
            return

        self.restore_task = loop.create_task(self.refresh_profile())
        self.restore_task.add_done_callback(self._on_restore_done)

    def _on_restore_done(self, task: asyncio.Task[Credential]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("保存済みプロフィールの更新に失敗しました: %s", exc)
