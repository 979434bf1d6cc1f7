"""
OAuth provider table and token endpoint client for the six platforms.

Provides:
    - OAuthProviderConfig / PROVIDERS: authorization + token endpoints,
      connect scopes and the scopes required to publish
    - required_publish_scopes(): Scope set checked before every publish
    - TokenResponse: Parsed ``{access_token, refresh_token?, expires_in?}``
    - build_authorization_url(): Authorization URL (+ PKCE verifier)
    - OAuthClient: Authorization-code exchange and the six refresh variants

Every refresh variant differs in URL, HTTP method, parameter names or
client authentication.  None of them retries: a failed call is reported
to the caller immediately.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple
from urllib.parse import urlencode

import httpx

from social_engine.config import OAuthAppCredentials
from social_engine.models import Platform, PlatformCredential

logger = logging.getLogger(__name__)


# =============================================================================
# PROVIDER TABLE
# =============================================================================


@dataclass(frozen=True)
class OAuthProviderConfig:
    """Static OAuth description of one platform."""

    platform: Platform
    authorize_url: str
    token_url: str
    connect_scopes: Tuple[str, ...]
    publish_scopes: FrozenSet[str]
    scope_separator: str = " "
    uses_pkce: bool = False
    extra_authorize_params: Dict[str, str] = field(default_factory=dict)


_YT_UPLOAD = "https://www.googleapis.com/auth/youtube.upload"
_YT_READONLY = "https://www.googleapis.com/auth/youtube.readonly"

PROVIDERS: Dict[Platform, OAuthProviderConfig] = {
    Platform.YOUTUBE: OAuthProviderConfig(
        platform=Platform.YOUTUBE,
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        connect_scopes=(_YT_UPLOAD, _YT_READONLY),
        publish_scopes=frozenset({_YT_UPLOAD}),
        extra_authorize_params={"access_type": "offline", "prompt": "consent"},
    ),
    Platform.INSTAGRAM: OAuthProviderConfig(
        platform=Platform.INSTAGRAM,
        authorize_url="https://www.instagram.com/oauth/authorize",
        token_url="https://api.instagram.com/oauth/access_token",
        connect_scopes=(
            "instagram_business_basic",
            "instagram_business_content_publish",
        ),
        publish_scopes=frozenset({"instagram_business_content_publish"}),
        scope_separator=",",
    ),
    Platform.TIKTOK: OAuthProviderConfig(
        platform=Platform.TIKTOK,
        authorize_url="https://www.tiktok.com/v2/auth/authorize/",
        token_url="https://open.tiktokapis.com/v2/oauth/token/",
        connect_scopes=("user.info.basic", "video.upload", "video.publish"),
        publish_scopes=frozenset({"video.publish"}),
        scope_separator=",",
    ),
    Platform.FACEBOOK: OAuthProviderConfig(
        platform=Platform.FACEBOOK,
        authorize_url="https://www.facebook.com/v18.0/dialog/oauth",
        token_url="https://graph.facebook.com/v18.0/oauth/access_token",
        connect_scopes=(
            "pages_show_list",
            "pages_manage_posts",
            "pages_read_engagement",
            "publish_video",
        ),
        publish_scopes=frozenset({"pages_manage_posts"}),
        scope_separator=",",
        extra_authorize_params={"display": "popup"},
    ),
    Platform.TWITTER: OAuthProviderConfig(
        platform=Platform.TWITTER,
        authorize_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        connect_scopes=(
            "tweet.read",
            "tweet.write",
            "users.read",
            "media.write",
            "offline.access",
        ),
        publish_scopes=frozenset({"tweet.write"}),
        uses_pkce=True,
    ),
    Platform.LINKEDIN: OAuthProviderConfig(
        platform=Platform.LINKEDIN,
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        token_url="https://www.linkedin.com/oauth/v2/accessToken",
        connect_scopes=("openid", "profile", "w_member_social"),
        publish_scopes=frozenset({"w_member_social"}),
    ),
}

# Instagram and Facebook rotate long-lived tokens through dedicated endpoints
INSTAGRAM_REFRESH_URL = "https://graph.instagram.com/refresh_access_token"
FACEBOOK_EXCHANGE_URL = "https://graph.facebook.com/v18.0/oauth/access_token"


def required_publish_scopes(platform: Platform) -> FrozenSet[str]:
    """Scopes a credential must hold before anything is published."""
    return PROVIDERS[platform].publish_scopes


# =============================================================================
# TOKEN RESPONSE
# =============================================================================


@dataclass
class TokenResponse:
    """Normalised token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scopes: Optional[FrozenSet[str]] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenResponse":
        """Parse a provider JSON payload.

        TikTok wraps tokens in a ``data`` object on some API versions;
        both shapes are accepted.

        Raises:
            ValueError: If the payload has no ``access_token``.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Token response is not an object: {payload!r}")
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        access_token = body.get("access_token")
        if not access_token:
            raise ValueError("Token response has no access_token")

        expires_in = body.get("expires_in")
        scope_value = body.get("scope")
        scopes = None
        if isinstance(scope_value, str) and scope_value.strip():
            scopes = frozenset(s for s in scope_value.replace(",", " ").split() if s)
        elif isinstance(scope_value, list):
            scopes = frozenset(str(s) for s in scope_value)

        return cls(
            access_token=access_token,
            refresh_token=body.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in not in (None, "") else None,
            scopes=scopes,
            raw=payload,
        )


# =============================================================================
# AUTHORIZATION URL (PKCE)
# =============================================================================


def generate_pkce_pair() -> Tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` using the S256 method."""
    verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def build_authorization_url(
    platform: Platform,
    app: OAuthAppCredentials,
    redirect_uri: str,
    state: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """Build the URL the user visits to grant access.

    Args:
        platform: Target platform.
        app: OAuth application credentials.
        redirect_uri: Callback registered with the provider.
        state: Anti-CSRF state; generated when omitted.

    Returns:
        ``(url, code_verifier)``; the verifier is ``None`` unless the
        provider uses PKCE and must be kept for :meth:`OAuthClient.exchange_code`.
    """
    provider = PROVIDERS[platform]
    client_key = "client_key" if platform == Platform.TIKTOK else "client_id"
    params: Dict[str, str] = {
        client_key: app.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": provider.scope_separator.join(provider.connect_scopes),
        "state": state or secrets.token_urlsafe(16),
    }
    params.update(provider.extra_authorize_params)

    verifier: Optional[str] = None
    if provider.uses_pkce:
        verifier, challenge = generate_pkce_pair()
        params["code_challenge"] = challenge
        params["code_challenge_method"] = "S256"

    return f"{provider.authorize_url}?{urlencode(params)}", verifier


# =============================================================================
# OAUTH CLIENT
# =============================================================================


class OAuthClient:
    """Calls provider token endpoints.

    Args:
        http: Shared ``httpx.AsyncClient``.
        app_credentials: Callable returning the OAuth application
            credentials for a platform value (defaults to reading
            ``{PLATFORM}_CLIENT_ID`` / ``{PLATFORM}_CLIENT_SECRET``).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        app_credentials: Optional[Callable[[str], OAuthAppCredentials]] = None,
    ) -> None:
        self.http = http
        self._app_credentials = app_credentials or OAuthAppCredentials.from_env
        self._refreshers: Dict[Platform, Callable[[str, Optional[OAuthAppCredentials]], Any]] = {
            Platform.YOUTUBE: self._refresh_google,
            Platform.INSTAGRAM: self._refresh_instagram,
            Platform.TIKTOK: self._refresh_tiktok,
            Platform.FACEBOOK: self._refresh_facebook,
            Platform.TWITTER: self._refresh_twitter,
            Platform.LINKEDIN: self._refresh_linkedin,
        }

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, credential: PlatformCredential) -> TokenResponse:
        """Exchange the credential's refresh token for a new access token.

        Raises:
            ConfigurationError: If the platform's OAuth app is not configured.
            httpx.HTTPError: On transport failures or non-2xx responses.
            ValueError: If the provider response is malformed.
        """
        if not credential.refresh_token:
            raise ValueError(f"Credential {credential.id} has no refresh token")
        app = (
            None
            if credential.platform == Platform.INSTAGRAM
            else self._app_credentials(credential.platform.value)
        )
        response = await self._refreshers[credential.platform](
            credential.refresh_token, app
        )
        response.raise_for_status()
        token = TokenResponse.from_payload(response.json())
        logger.info(
            "[CREDENTIALS] Refreshed %s token for credential %s (expires_in=%s)",
            credential.platform.value,
            credential.id,
            token.expires_in,
        )
        return token

    async def _refresh_google(
        self, refresh_token: str, app: OAuthAppCredentials
    ) -> httpx.Response:
        return await self.http.post(
            PROVIDERS[Platform.YOUTUBE].token_url,
            data={
                "client_id": app.client_id,
                "client_secret": app.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    async def _refresh_instagram(
        self, refresh_token: str, app: Optional[OAuthAppCredentials]
    ) -> httpx.Response:
        # Long-lived tokens refresh themselves: the token is sent as access_token
        return await self.http.get(
            INSTAGRAM_REFRESH_URL,
            params={
                "grant_type": "ig_refresh_token",
                "access_token": refresh_token,
            },
        )

    async def _refresh_tiktok(
        self, refresh_token: str, app: OAuthAppCredentials
    ) -> httpx.Response:
        return await self.http.post(
            PROVIDERS[Platform.TIKTOK].token_url,
            data={
                "client_key": app.client_id,
                "client_secret": app.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    async def _refresh_facebook(
        self, refresh_token: str, app: OAuthAppCredentials
    ) -> httpx.Response:
        return await self.http.get(
            FACEBOOK_EXCHANGE_URL,
            params={
                "grant_type": "fb_exchange_token",
                "client_id": app.client_id,
                "client_secret": app.client_secret,
                "fb_exchange_token": refresh_token,
            },
        )

    async def _refresh_twitter(
        self, refresh_token: str, app: OAuthAppCredentials
    ) -> httpx.Response:
        # Confidential clients authenticate with HTTP basic auth
        return await self.http.post(
            PROVIDERS[Platform.TWITTER].token_url,
            data={
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "client_id": app.client_id,
            },
            auth=(app.client_id, app.client_secret),
        )

    async def _refresh_linkedin(
        self, refresh_token: str, app: OAuthAppCredentials
    ) -> httpx.Response:
        return await self.http.post(
            PROVIDERS[Platform.LINKEDIN].token_url,
            data={
                "client_id": app.client_id,
                "client_secret": app.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    # ------------------------------------------------------------------
    # Authorization-code exchange
    # ------------------------------------------------------------------

    async def exchange_code(
        self,
        platform: Platform,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            ConfigurationError: If the platform's OAuth app is not configured.
            httpx.HTTPError: On transport failures or non-2xx responses.
            ValueError: If the provider response is malformed.
        """
        provider = PROVIDERS[platform]
        app = self._app_credentials(platform.value)
        client_key = "client_key" if platform == Platform.TIKTOK else "client_id"
        data = {
            client_key: app.client_id,
            "client_secret": app.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        if platform == Platform.TWITTER:
            response = await self.http.post(
                provider.token_url, data=data, auth=(app.client_id, app.client_secret)
            )
        else:
            response = await self.http.post(provider.token_url, data=data)
        response.raise_for_status()
        return TokenResponse.from_payload(response.json())


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "OAuthProviderConfig",
    "PROVIDERS",
    "INSTAGRAM_REFRESH_URL",
    "FACEBOOK_EXCHANGE_URL",
    "required_publish_scopes",
    "TokenResponse",
    "generate_pkce_pair",
    "build_authorization_url",
    "OAuthClient",
]
