"""サインインフロー（プロバイダへのリダイレクトと戻りの処理）。"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

from kagi.auth.credential_store import CredentialStore
from kagi.auth.token_manager import TokenManager
from kagi.config.settings import AuthConfig
from kagi.errors import (
    ConfigurationError,
    ErrorCode,
    SessionExpiredError,
    UnknownProviderError,
    create_auth_error,
    create_config_error,
)
from kagi.identity.client import IdentityServiceClient
from kagi.models import FlowState, SessionHandle
from kagi.navigator import Navigator
from kagi.storage.base import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_ID_STORAGE_KEY_PREFIX = "Auth:SessionId"
AUTH_CODE_MARKER = re.compile(r"[?&]code=")

# リクエスト中・コード交換中は新しいサインインを受け付けない
_BUSY_STATES = frozenset(
    {FlowState.AUTHURI_REQUESTED, FlowState.CALLBACK_RECEIVED, FlowState.CODE_EXCHANGING}
)


def has_auth_code(url: str) -> bool:
    """URLにプロバイダの認可コードが含まれているか"""
    return AUTH_CODE_MARKER.search(url) is not None


def strip_query(url: str) -> str:
    """クエリとフラグメントを除いたURL（origin + path）を返す"""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class SignInFlowController:
    """プロバイダへのリダイレクトと、戻ってきた認可コードの交換を調停する。"""

    def __init__(
        self,
        config: AuthConfig,
        session_storage: KeyValueStore,
        navigator: Navigator,
        client: IdentityServiceClient,
        credentials: CredentialStore,
        token_manager: TokenManager,
    ) -> None:
        self._config = config
        self._session_storage = session_storage
        self._navigator = navigator
        self._client = client
        self._credentials = credentials
        self._token_manager = token_manager
        self._session_key = f"{SESSION_ID_STORAGE_KEY_PREFIX}:{config.storage_scope}"
        self._state = FlowState.IDLE

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def session_key(self) -> str:
        return self._session_key

    def _transition(self, state: FlowState) -> None:
        logger.debug("Sign-in flow: %s -> %s", self._state.value, state.value)
        self._state = state

    async def sign_in_with_provider(
        self,
        provider_or_options: str | Mapping[str, Any],
        context: Any = None,
    ) -> None:
        """プロバイダの認可画面へリダイレクトする。

        Args:
            provider_or_options: プロバイダID、または ``{"provider": ..., "context": ...}``。
            context: 戻りの ``handle_post_sign_in_redirect`` でそのまま返される値。

        Raises:
            ConfigurationError: プロバイダ未指定、またはフロー進行中。
            UnknownProviderError: 設定されていないプロバイダ。
            RemoteServiceError: 認可URIの取得に失敗した場合。
        """

        if isinstance(provider_or_options, Mapping):
            provider = provider_or_options.get("provider")
            context = provider_or_options.get("context", context)
        else:
            provider = provider_or_options

        if not provider or not isinstance(provider, str):
            raise ConfigurationError(create_config_error("provider が指定されていません"))
        if provider not in self._config.providers:
            raise UnknownProviderError(
                create_config_error(
                    f'Provider "{provider}" is not configured with this "Auth" instance.',
                    details={"provider": provider},
                    code=ErrorCode.CONFIG_UNKNOWN_PROVIDER,
                )
            )
        if self._state in _BUSY_STATES:
            raise ConfigurationError(
                create_config_error(
                    "サインインフローが進行中です",
                    details={"state": self._state.value},
                    code=ErrorCode.AUTH_FLOW_IN_PROGRESS,
                )
            )

        self._transition(FlowState.AUTHURI_REQUESTED)
        try:
            result = await self._client.create_auth_uri(
                provider_id=provider,
                scope=self._config.providers.scope_for(provider),
                continue_uri=self._config.redirect_url,
                context=context,
            )
        except Exception:
            self._transition(FlowState.FAILED)
            raise

        handle = SessionHandle(session_id=result.session_id)
        self._session_storage.set(self._session_key, handle.session_id)
        self._transition(FlowState.REDIRECTED)
        logger.info("Redirecting to provider %s", provider)
        self._navigator.redirect(result.auth_uri)

    async def handle_post_sign_in_redirect(self) -> Any:
        """プロバイダからの戻りを処理し、サインイン時の context を返す。

        認可コードを含まないURLでは何もせずNoneを返す。

        Raises:
            SessionExpiredError: 保存済みのセッションIDが無い場合。
            RemoteServiceError: コード交換・プロフィール取得に失敗した場合。
        """

        url = self._navigator.current_url()
        if not has_auth_code(url):
            return None

        self._transition(FlowState.CALLBACK_RECEIVED)
        try:
            handle = self._consume_session()
            self._transition(FlowState.CODE_EXCHANGING)
            response = await self._client.exchange_code(handle.session_id, url)
            token_details = self._token_manager.to_token_details(response)
            credential = await self._credentials.fetch_profile(self._token_manager, token_details)
        except Exception:
            self._transition(FlowState.FAILED)
            raise

        # 認可コードを表示中のURLから除去する
        self._navigator.replace_visible_url(strip_query(url))
        self._transition(FlowState.AUTHENTICATED)
        logger.info("Signed in as %s", credential.user_id)
        return response.context

    def _consume_session(self) -> SessionHandle:
        session_id = self._session_storage.get(self._session_key)
        if not session_id:
            raise SessionExpiredError(
                create_auth_error(
                    ErrorCode.AUTH_SESSION_EXPIRED,
                    "サインインのセッションが見つかりません。もう一度サインインしてください。",
                    details={"key": self._session_key},
                )
            )
        self._session_storage.remove(self._session_key)
        return SessionHandle(session_id=session_id)

    def reset(self) -> None:
        """サインアウト時に状態を初期化する"""
        self._transition(FlowState.IDLE)
