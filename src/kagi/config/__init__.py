"""設定管理 - AuthInstance の構築設定と接続設定"""

from kagi.config.settings import (
    DEFAULT_INSTANCE_NAME,
    AuthConfig,
    KagiSettings,
    ProviderOptions,
    mask_secret,
)

__all__ = [
    "AuthConfig",
    "KagiSettings",
    "ProviderOptions",
    "DEFAULT_INSTANCE_NAME",
    "mask_secret",
]
