"""サインインフローと資格情報ライフサイクルの公開API。"""

from __future__ import annotations

from kagi.auth.credential_store import USER_STORAGE_KEY_PREFIX, CredentialStore
from kagi.auth.flow import SESSION_ID_STORAGE_KEY_PREFIX, SignInFlowController
from kagi.auth.instance import AuthInstance
from kagi.auth.listeners import Listener, ListenerRegistry
from kagi.auth.token_manager import TokenManager

__all__ = [
    "AuthInstance",
    "CredentialStore",
    "Listener",
    "ListenerRegistry",
    "SESSION_ID_STORAGE_KEY_PREFIX",
    "SignInFlowController",
    "TokenManager",
    "USER_STORAGE_KEY_PREFIX",
]
