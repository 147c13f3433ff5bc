"""Identity Service クライアントの公開API。"""

from kagi.identity.client import AuthUriResult, IdentityServiceClient, TokenResponse

__all__ = [
    "AuthUriResult",
    "IdentityServiceClient",
    "TokenResponse",
]
