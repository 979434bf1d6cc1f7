"""Credential store access, OAuth endpoints and token lifecycle management."""

from social_engine.credentials.lifecycle import CredentialManager
from social_engine.credentials.oauth import (
    PROVIDERS,
    OAuthClient,
    TokenResponse,
    build_authorization_url,
    required_publish_scopes,
)

__all__ = [
    "CredentialManager",
    "OAuthClient",
    "TokenResponse",
    "PROVIDERS",
    "build_authorization_url",
    "required_publish_scopes",
]
