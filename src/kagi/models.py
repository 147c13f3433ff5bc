"""
共通データモデル

サインインフローと資格情報管理で使用されるデータ構造を定義
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

# Identity Service の lookup レスポンスに含まれる内部メタデータ
BACKEND_METADATA_FIELDS = ("kind",)


class FlowState(Enum):
    """サインインフローの状態"""
    IDLE = "idle"
    AUTHURI_REQUESTED = "authuri_requested"
    REDIRECTED = "redirected"
    CALLBACK_RECEIVED = "callback_received"
    CODE_EXCHANGING = "code_exchanging"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class TokenDetails:
    """トークン情報

    Attributes:
        id_token: ベアラートークン
        refresh_token: リフレッシュトークン
        expires_at: 失効時刻（UNIXエポック秒、絶対時刻）
    """
    id_token: str
    refresh_token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """指定時刻で失効しているか"""
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idToken": self.id_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenDetails":
        return cls(
            id_token=str(data["idToken"]),
            refresh_token=str(data["refreshToken"]),
            expires_at=float(data["expiresAt"]),
        )


@dataclass(frozen=True)
class Credential:
    """認証済みユーザーの資格情報

    プロフィール項目は Identity Service の値をそのまま保持する。
    tokenDetails を含めた完全な値としてのみ生成・永続化される。

    Attributes:
        user_id: ユーザー識別子（localId）
        profile: プロフィール項目（displayName, email, providerUserInfo など）
        token_details: トークン情報
    """
    user_id: str
    profile: Mapping[str, Any]
    token_details: TokenDetails

    @property
    def display_name(self) -> Optional[str]:
        return self.profile.get("displayName")

    @property
    def email(self) -> Optional[str]:
        return self.profile.get("email")

    def with_token_details(self, token_details: TokenDetails) -> "Credential":
        """トークン情報だけを置き換えた新しい資格情報を返す"""
        return replace(self, token_details=token_details)

    def to_dict(self) -> Dict[str, Any]:
        """永続化用の辞書表現（プロフィール + tokenDetails）"""
        data = dict(self.profile)
        data["localId"] = self.user_id
        data["tokenDetails"] = self.token_details.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        """辞書表現から資格情報を復元する

        Raises:
            KeyError: localId または tokenDetails が欠けている場合
        """
        profile = {
            key: value
            for key, value in data.items()
            if key not in ("localId", "tokenDetails")
        }
        return cls(
            user_id=str(data["localId"]),
            profile=MappingProxyType(profile),
            token_details=TokenDetails.from_dict(data["tokenDetails"]),
        )

    @classmethod
    def from_lookup(cls, user: Mapping[str, Any], token_details: TokenDetails) -> "Credential":
        """lookup レスポンスのユーザーレコードから資格情報を作る"""
        profile = {
            key: value
            for key, value in user.items()
            if key not in BACKEND_METADATA_FIELDS and key != "localId"
        }
        return cls(
            user_id=str(user["localId"]),
            profile=MappingProxyType(profile),
            token_details=token_details,
        )


@dataclass(frozen=True)
class SessionHandle:
    """プロバイダへのリダイレクト前に保存するセッション"""
    session_id: str


@dataclass(frozen=True)
class ProviderRegistration:
    """プロバイダIDと要求スコープの対応（構築後は不変）"""
    scopes: Mapping[str, Optional[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "scopes", MappingProxyType(dict(self.scopes)))

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self.scopes

    def __len__(self) -> int:
        return len(self.scopes)

    def scope_for(self, provider_id: str) -> Optional[str]:
        return self.scopes[provider_id]

    @property
    def provider_ids(self) -> tuple:
        return tuple(self.scopes)
