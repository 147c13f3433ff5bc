"""Pydantic V2 ベースの設定モデル"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kagi.errors import ConfigurationError, create_config_error
from kagi.models import ProviderRegistration

logger = logging.getLogger(__name__)

DEFAULT_INSTANCE_NAME = "default"
IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1/accounts"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"


def mask_secret(value: str) -> str:
    """鍵やトークンをマスクしてログ出力を避ける"""
    if not value:
        return "***"
    if len(value) <= 4:
        return "*" * len(value)
    return f"***{value[-4:]}"


class KagiSettings(BaseSettings):
    """Identity Service 接続設定（環境変数 KAGI_* で上書き可能）"""

    model_config = SettingsConfigDict(
        env_prefix="KAGI_",
        env_file=".env",
        extra="ignore",
    )

    identity_toolkit_url: str = Field(default=IDENTITY_TOOLKIT_URL)
    secure_token_url: str = Field(default=SECURE_TOKEN_URL)
    http_timeout: float = Field(default=30.0, gt=0)


class ProviderOptions(BaseModel):
    """プロバイダ1件分の指定（{id, scope}）"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(..., min_length=1)
    scope: Optional[str] = None


class AuthConfig(BaseModel):
    """AuthInstance の構築設定

    providers は文字列または {id, scope} の列で指定でき、
    構築時に ProviderRegistration へ正規化される。
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    name: str = Field(default=DEFAULT_INSTANCE_NAME, min_length=1)
    api_key: str = Field(..., min_length=1, alias="apiKey")
    providers: ProviderRegistration = Field(...)
    redirect_url: str = Field(..., min_length=1, alias="redirectURL")

    @field_validator("providers", mode="plain")
    @classmethod
    def normalize_providers(cls, value: Any) -> ProviderRegistration:
        """プロバイダ指定を一度だけ正規化する"""
        if isinstance(value, ProviderRegistration):
            entries: Dict[str, Optional[str]] = dict(value.scopes)
        elif isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise ValueError("providers はプロバイダ指定の配列である必要があります")
        else:
            entries = {}
            for item in value:
                option = cls._coerce_provider(item)
                entries[option.id] = option.scope

        if not entries:
            raise ValueError("providers には1件以上のプロバイダが必要です")
        return ProviderRegistration(entries)

    @staticmethod
    def _coerce_provider(item: Union[str, Mapping[str, Any], ProviderOptions]) -> ProviderOptions:
        if isinstance(item, ProviderOptions):
            return item
        if isinstance(item, str):
            return ProviderOptions(id=item)
        if isinstance(item, Mapping):
            data = dict(item)
            # 旧形式 {name, scope} を受け付ける
            if "id" not in data and "name" in data:
                data["id"] = data.pop("name")
            try:
                return ProviderOptions(**data)
            except ValidationError as exc:
                raise ValueError(f"プロバイダ指定が不正です: {item!r}") from exc
        raise ValueError(f"プロバイダ指定が不正です: {item!r}")

    @classmethod
    def build(cls, data: Union["AuthConfig", Mapping[str, Any]]) -> "AuthConfig":
        """辞書から設定を生成する

        Raises:
            ConfigurationError: 必須項目の欠落や形式不正
        """
        if isinstance(data, AuthConfig):
            return data
        if not isinstance(data, Mapping):
            raise ConfigurationError(create_config_error("設定は辞書で指定してください"))
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            errors: List[Dict[str, Any]] = [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
            ]
            logger.error("AuthConfig の検証に失敗しました: %s", errors)
            raise ConfigurationError(
                create_config_error("設定が不正です", details={"errors": errors})
            ) from exc

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AuthConfig":
        """YAMLファイルから設定を読み込む

        Raises:
            ConfigurationError: 読み込み失敗や形式不正
        """
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as file:
                data = yaml.safe_load(file)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                create_config_error(
                    f"設定ファイルを読み込めません: {path}",
                    details={"path": str(path), "reason": str(exc)},
                )
            ) from exc
        return cls.build(data or {})

    @property
    def storage_scope(self) -> str:
        """ストレージキーの名前空間（apiKey:name）"""
        return f"{self.api_key}:{self.name}"

    @property
    def masked_api_key(self) -> str:
        """マスク済みAPIキー"""
        return mask_secret(self.api_key)
