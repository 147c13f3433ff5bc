"""kagi - フェデレーションIDのリダイレクト型サインインと資格情報管理"""

from kagi.auth import AuthInstance
from kagi.config import AuthConfig, KagiSettings
from kagi.errors import (
    ConfigurationError,
    KagiException,
    RemoteServiceError,
    SessionExpiredError,
    TokenRefreshError,
    UnknownProviderError,
)
from kagi.identity import IdentityServiceClient
from kagi.models import Credential, FlowState, TokenDetails
from kagi.navigator import MemoryNavigator, Navigator, WebbrowserNavigator
from kagi.storage import JsonFileStore, KeyringStore, KeyValueStore, MemoryStore, StorageProvider

__version__ = "0.1.0"

__all__ = [
    "AuthConfig",
    "AuthInstance",
    "ConfigurationError",
    "Credential",
    "FlowState",
    "IdentityServiceClient",
    "KagiException",
    "KagiSettings",
    "KeyValueStore",
    "JsonFileStore",
    "KeyringStore",
    "MemoryNavigator",
    "MemoryStore",
    "Navigator",
    "RemoteServiceError",
    "SessionExpiredError",
    "StorageProvider",
    "TokenDetails",
    "TokenRefreshError",
    "UnknownProviderError",
    "WebbrowserNavigator",
    "__version__",
]
