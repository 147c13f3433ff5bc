"""
エラー定義

kagiで使用されるエラーコードと例外クラス
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """エラーコード

    カテゴリ別にエラーコードを定義:
    - CONFIG_xxx: 設定エラー
    - AUTH_xxx: 認証フローエラー
    - API_xxx: Identity Service とのAPIエラー
    """
    # 設定エラー
    CONFIG_INVALID_VALUE = "CONFIG_001"
    CONFIG_UNKNOWN_PROVIDER = "CONFIG_002"

    # 認証フローエラー
    AUTH_SESSION_EXPIRED = "AUTH_001"
    AUTH_TOKEN_REFRESH_FAILED = "AUTH_002"
    AUTH_FLOW_IN_PROGRESS = "AUTH_003"

    # APIエラー
    API_ERROR = "API_001"
    API_TRANSPORT = "API_002"
    API_INVALID_RESPONSE = "API_003"


@dataclass
class KagiError:
    """kagiエラー情報

    Attributes:
        code: エラーコード文字列
        message: エラーメッセージ
        details: 追加のエラー詳細情報
        recoverable: 復旧可能かどうか
    """
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    recoverable: bool = False
    log_level: int = logging.ERROR


class KagiException(Exception):
    """kagi例外クラス

    KagiErrorをラップする例外クラス
    """

    def __init__(self, error: KagiError):
        """KagiExceptionを初期化

        Args:
            error: KagiErrorインスタンス
        """
        self.error = error
        self.log_level = error.log_level
        super().__init__(f"[{error.code}] {error.message}")


class ConfigurationError(KagiException):
    """設定・引数が不正な場合の例外（リトライ不可）"""


class UnknownProviderError(ConfigurationError):
    """設定されていないプロバイダでサインインしようとした場合の例外"""


class SessionExpiredError(KagiException):
    """リダイレクト後に保存済みセッションIDが見つからない場合の例外"""


class RemoteServiceError(KagiException):
    """Identity Service が失敗レスポンスを返した場合の例外"""

    @property
    def status_code(self) -> Optional[int]:
        """HTTPステータスコード（通信エラー時はNone）"""
        return (self.error.details or {}).get("status_code")


class TokenRefreshError(KagiException):
    """トークン更新に失敗した場合の例外（資格情報は破棄しない）"""


ERROR_CODE_LOG_LEVEL: Dict[ErrorCode, int] = {
    ErrorCode.CONFIG_INVALID_VALUE: logging.ERROR,
    ErrorCode.CONFIG_UNKNOWN_PROVIDER: logging.ERROR,
    ErrorCode.AUTH_SESSION_EXPIRED: logging.WARNING,
    ErrorCode.AUTH_TOKEN_REFRESH_FAILED: logging.WARNING,
    ErrorCode.API_TRANSPORT: logging.WARNING,
}


# よく使用されるエラーのファクトリ関数
def create_config_error(
    message: str,
    details: Optional[Dict[str, Any]] = None,
    code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
) -> KagiError:
    """設定エラーを作成

    Args:
        message: エラーメッセージ
        details: 追加詳細
        code: エラーコード

    Returns:
        KagiError: 設定エラー
    """
    return KagiError(
        code=code.value,
        message=message,
        details=details,
        recoverable=False,
        log_level=ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )


def create_auth_error(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = True,
) -> KagiError:
    """認証フローエラーを作成

    Args:
        code: エラーコード
        message: エラーメッセージ
        details: 追加詳細
        recoverable: 復旧可能かどうか（再サインインで回復できるか）

    Returns:
        KagiError: 認証フローエラー
    """
    return KagiError(
        code=code.value,
        message=message,
        details=details,
        recoverable=recoverable,
        log_level=ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )


def create_api_error(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = False,
    log_level: Optional[int] = None,
) -> KagiError:
    """APIエラーを作成

    認可コードは使い捨てのため、既定ではリトライ不可として扱う。

    Args:
        code: エラーコード
        message: エラーメッセージ
        details: 追加詳細
        recoverable: 復旧可能かどうか

    Returns:
        KagiError: APIエラー
    """
    return KagiError(
        code=code.value,
        message=message,
        details=details,
        recoverable=recoverable,
        log_level=log_level or ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )
