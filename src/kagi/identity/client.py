"""Identity Service (Identity Toolkit / Secure Token) クライアント。

参考: https://cloud.google.com/identity-platform/docs/reference/rest/v1/accounts
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import httpx

from kagi.config.settings import KagiSettings, mask_secret
from kagi.errors import ErrorCode, RemoteServiceError, create_api_error

logger = logging.getLogger(__name__)

TOKEN_METHOD = "token"


@dataclass(frozen=True, slots=True)
class AuthUriResult:
    """createAuthUri の結果。"""

    auth_uri: str
    session_id: str


@dataclass(frozen=True, slots=True)
class TokenResponse:
    """コード交換・トークン更新で得られる生のトークン。

    expires_in は相対秒数のまま保持する。
    """

    id_token: str
    refresh_token: str
    expires_in: float
    context: Any = None


class IdentityServiceClient:
    """Identity Service へのリクエストを行うステートレスなクライアント。"""

    def __init__(
        self,
        api_key: str,
        settings: KagiSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """IdentityServiceClientを初期化する。

        Args:
            api_key: Identity Service のAPIキー。
            settings: エンドポイントとタイムアウトの設定。
            http_client: 共有するHTTPクライアント。未指定時は内部で生成する。
        """

        self._api_key = api_key
        self._settings = settings or KagiSettings()
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=self._settings.http_timeout)

    async def aclose(self) -> None:
        """内部で生成したHTTPクライアントを閉じる。"""

        if self._owns_client:
            await self._http_client.aclose()

    def endpoint_for(self, method: str) -> str:
        if method == TOKEN_METHOD:
            return self._settings.secure_token_url
        return f"{self._settings.identity_toolkit_url}:{method}"

    async def request(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """メソッド名とペイロードでリクエストし、JSON結果を返す。

        Args:
            method: Identity Toolkit のメソッド名、または ``token``。
            payload: リクエストボディ。

        Returns:
            レスポンスのJSON。

        Raises:
            RemoteServiceError: 通信失敗、失敗レスポンス、JSONでないレスポンス。
        """

        url = self.endpoint_for(method)
        logger.debug("Identity Service request: %s (key=%s)", method, mask_secret(self._api_key))
        try:
            response = await self._http_client.post(url, params={"key": self._api_key}, json=payload)
        except httpx.HTTPError as exc:
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_TRANSPORT,
                    f"Identity Service への通信に失敗しました: {exc}",
                    details={"method": method},
                    recoverable=True,
                )
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_INVALID_RESPONSE,
                    "Identity Service のレスポンスがJSONではありません",
                    details={"method": method, "status_code": response.status_code},
                )
            ) from exc

        if not response.is_success:
            message = self._error_message(body) or f"HTTP {response.status_code}"
            logger.error("Identity Service error: %s -> %s", method, message)
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_ERROR,
                    message,
                    details={"method": method, "status_code": response.status_code},
                )
            )

        if not isinstance(body, dict):
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_INVALID_RESPONSE,
                    "Identity Service のレスポンス形式が不正です",
                    details={"method": method, "status_code": response.status_code},
                )
            )
        return body

    async def create_auth_uri(
        self,
        provider_id: str,
        scope: str | None,
        continue_uri: str,
        context: Any = None,
    ) -> AuthUriResult:
        """プロバイダの認可URIとセッションIDを取得する。"""

        payload: dict[str, Any] = {
            "providerId": provider_id,
            "authFlowType": "CODE_FLOW",
            "continueUri": continue_uri,
        }
        if scope is not None:
            payload["oauthScope"] = scope
        if context is not None:
            payload["context"] = context

        body = await self.request("createAuthUri", payload)
        return AuthUriResult(
            auth_uri=self._require(body, "authUri", "createAuthUri"),
            session_id=self._require(body, "sessionId", "createAuthUri"),
        )

    async def exchange_code(self, session_id: str, request_uri: str) -> TokenResponse:
        """リダイレクトで受け取った認可コードをトークンに交換する。"""

        body = await self.request(
            "signInWithIdp",
            {
                "sessionId": session_id,
                "requestUri": request_uri,
                "returnSecureToken": True,
            },
        )
        return TokenResponse(
            id_token=self._require(body, "idToken", "signInWithIdp"),
            refresh_token=self._require(body, "refreshToken", "signInWithIdp"),
            expires_in=self._seconds(body, "expiresIn", "signInWithIdp"),
            context=body.get("context"),
        )

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """リフレッシュトークンで新しいトークンを取得する。"""

        body = await self.request(
            TOKEN_METHOD,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return TokenResponse(
            id_token=self._require(body, "id_token", TOKEN_METHOD),
            refresh_token=self._require(body, "refresh_token", TOKEN_METHOD),
            expires_in=self._seconds(body, "expires_in", TOKEN_METHOD),
        )

    async def lookup_user(self, id_token: str) -> list[dict[str, Any]]:
        """IDトークンに対応するユーザーレコードを取得する。"""

        body = await self.request("lookup", {"idToken": id_token})
        users = body.get("users")
        if not isinstance(users, list) or not users:
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_INVALID_RESPONSE,
                    "USER_NOT_FOUND",
                    details={"method": "lookup"},
                )
            )
        return users

    def _error_message(self, body: Any) -> str | None:
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            if isinstance(error, str):
                return error
        return None

    def _require(self, body: dict[str, Any], key: str, method: str) -> str:
        value = body.get(key)
        if not isinstance(value, str) or not value:
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_INVALID_RESPONSE,
                    f"{key} がレスポンスに含まれていません",
                    details={"method": method},
                )
            )
        return value

    def _seconds(self, body: dict[str, Any], key: str, method: str) -> float:
        # Identity Toolkit は秒数を文字列で返す
        try:
            return float(body[key])
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteServiceError(
                create_api_error(
                    ErrorCode.API_INVALID_RESPONSE,
                    f"{key} がレスポンスに含まれていません",
                    details={"method": method},
                )
            ) from exc
