"""
Credential lifecycle management: validity checks, refresh and rotation.

``CredentialManager.ensure_valid`` is the only place where tokens are
refreshed.  Refresh is a critical section per credential: an
``asyncio.Lock`` keyed by credential id serialises callers inside one
process, the credential is re-read from the store once the lock is held,
and the rotated tokens are written with a compare-and-set on the previous
access token so two processes never both believe they own the rotation.

A failed refresh deactivates the credential *before* ``AuthError`` is
raised, so the next caller sees an inactive credential and does not try
the same doomed refresh again.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx

from social_engine.credentials.oauth import OAuthClient, TokenResponse
from social_engine.database import SupabaseDB
from social_engine.exceptions import AuthError, ErrorKind, ValidationError
from social_engine.models import Platform, PlatformCredential
from social_engine.utils import Clock, generate_id, utc_now

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)


class CredentialManager:
    """Keeps platform credentials usable and persists every rotation.

    Args:
        db: Database client (:class:`~social_engine.database.SupabaseDB`).
        oauth: Token endpoint client.
        clock: Returns the current UTC time.
        refresh_margin: Tokens expiring within this margin are refreshed.
    """

    def __init__(
        self,
        db: SupabaseDB,
        oauth: OAuthClient,
        clock: Clock = utc_now,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
    ) -> None:
        self.db = db
        self.oauth = oauth
        self.clock = clock
        self.refresh_margin = refresh_margin
        self._locks: Dict[str, asyncio.Lock] = {}

    # ================================================================
    # VALIDITY
    # ================================================================

    def needs_refresh(self, credential: PlatformCredential) -> bool:
        """Whether the access token expires within the refresh margin."""
        if credential.token_expires_at is None:
            return False
        return credential.token_expires_at <= self.clock() + self.refresh_margin

    async def ensure_valid(self, credential: PlatformCredential) -> PlatformCredential:
        """Return a credential whose access token is usable right now.

        Args:
            credential: An active credential.

        Returns:
            *credential* unchanged when it does not expire or expires after
            the refresh margin; otherwise the refreshed and already
            persisted credential.

        Raises:
            AuthError: ``TOKEN_EXPIRED_NO_REFRESH`` when the token is
                expiring and there is no refresh token;
                ``REFRESH_FAILED`` when the refresh call fails or the
                credential is no longer active.
        """
        if not credential.is_active:
            raise AuthError(
                ErrorKind.REFRESH_FAILED,
                credential.id,
                f"Credential {credential.id} is inactive",
            )
        if not self.needs_refresh(credential):
            return credential

        async with self._lock_for(credential.id):
            current = await self._reload(credential)
            if not self.needs_refresh(current):
                # Another caller refreshed while we waited for the lock
                logger.debug(
                    "[CREDENTIALS] Credential %s already refreshed by another caller",
                    current.id,
                )
                return current

            if not current.refresh_token:
                logger.warning(
                    "[CREDENTIALS] %s credential %s expired and has no refresh token",
                    current.platform.value,
                    current.id,
                )
                raise AuthError(ErrorKind.TOKEN_EXPIRED_NO_REFRESH, current.id)

            return await self._refresh(current)

    # ================================================================
    # REFRESH
    # ================================================================

    async def _refresh(self, credential: PlatformCredential) -> PlatformCredential:
        """Run the platform refresh and persist the rotated tokens.

        Must be called with the credential's lock held.
        """
        now = self.clock()
        try:
            token = await self.oauth.refresh(credential)
        except (httpx.HTTPError, ValueError) as exc:
            await self._deactivate(credential, f"refresh call failed: {exc}")
            raise AuthError(
                ErrorKind.REFRESH_FAILED,
                credential.id,
                f"{credential.platform.value} token refresh failed: {exc}",
            ) from exc

        new_expiry = (
            now + timedelta(seconds=token.expires_in)
            if token.expires_in
            else None
        )
        if (
            new_expiry is not None
            and credential.token_expires_at is not None
            and new_expiry <= credential.token_expires_at
        ):
            await self._deactivate(credential, "provider returned a non-advancing expiry")
            raise AuthError(
                ErrorKind.REFRESH_FAILED,
                credential.id,
                f"{credential.platform.value} refresh did not extend token lifetime",
            )

        refreshed = replace(
            credential,
            access_token=token.access_token,
            # Providers that do not rotate refresh tokens omit them
            refresh_token=token.refresh_token or credential.refresh_token,
            token_expires_at=new_expiry,
            # Scopes stay as granted at connection time; the store keeps them too
            scopes=set(credential.scopes),
            updated_at=now,
        )

        written = await self.db.update_credential_tokens(
            credential_id=credential.id,
            expected_access_token=credential.access_token,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            token_expires_at=refreshed.token_expires_at,
            updated_at=now,
        )
        if not written:
            return await self._resolve_lost_rotation(credential)

        logger.info(
            "[CREDENTIALS] Refreshed %s credential %s (new expiry=%s)",
            credential.platform.value,
            credential.id,
            new_expiry.isoformat() if new_expiry else "none",
        )
        return refreshed

    async def _resolve_lost_rotation(
        self, credential: PlatformCredential
    ) -> PlatformCredential:
        """Handle a compare-and-set miss on token rotation.

        Another process rotated (or deactivated) the credential between our
        read and our write.  Its persisted state wins.
        """
        row = await self.db.get_credential(credential.id)
        latest = PlatformCredential.from_row(row) if row else None
        if latest is None or not latest.is_active or self.needs_refresh(latest):
            raise AuthError(
                ErrorKind.REFRESH_FAILED,
                credential.id,
                f"Credential {credential.id} changed during refresh",
            )
        logger.info(
            "[CREDENTIALS] Credential %s was rotated concurrently, using stored tokens",
            credential.id,
        )
        return latest

    async def _reload(self, credential: PlatformCredential) -> PlatformCredential:
        row = await self.db.get_credential(credential.id)
        if row is None:
            raise AuthError(
                ErrorKind.REFRESH_FAILED,
                credential.id,
                f"Credential {credential.id} no longer exists",
            )
        current = PlatformCredential.from_row(row)
        if not current.is_active:
            raise AuthError(
                ErrorKind.REFRESH_FAILED,
                credential.id,
                f"Credential {credential.id} was deactivated",
            )
        return current

    async def _deactivate(self, credential: PlatformCredential, reason: str) -> None:
        logger.warning(
            "[CREDENTIALS] Deactivating %s credential %s: %s",
            credential.platform.value,
            credential.id,
            reason,
        )
        await self.db.deactivate_credential(credential.id, updated_at=self.clock())

    def _lock_for(self, credential_id: str) -> asyncio.Lock:
        lock = self._locks.get(credential_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[credential_id] = lock
        return lock

    # ================================================================
    # CONNECT / DISCONNECT
    # ================================================================

    async def connect_account(
        self,
        user_id: str,
        platform: Platform,
        token: TokenResponse,
        account_name: str,
        account_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        granted_scopes: Optional[set] = None,
    ) -> PlatformCredential:
        """Store a freshly minted credential as active.

        Args:
            user_id: Owning user.
            platform: Platform of the account.
            token: Token endpoint response from the code exchange.
            account_name: Display name of the account.
            account_id: Platform account identifier.
            metadata: Platform metadata (e.g. ``{"page_id": ...}``).
            granted_scopes: Scopes to record when the provider response
                does not list them.

        Returns:
            The stored credential.
        """
        if not account_id:
            raise ValidationError("account_id cannot be empty")

        now = self.clock()
        credential = PlatformCredential(
            id=generate_id(),
            user_id=user_id,
            platform=platform,
            account_name=account_name,
            account_id=account_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            token_expires_at=(
                now + timedelta(seconds=token.expires_in) if token.expires_in else None
            ),
            scopes=set(token.scopes or granted_scopes or set()),
            metadata=dict(metadata or {}),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        row = await self.db.save_credential(credential.to_row())
        logger.info(
            "[CREDENTIALS] Connected %s account %s for user %s",
            platform.value,
            account_name or account_id,
            user_id,
        )
        return PlatformCredential.from_row(row)

    async def disconnect(self, credential_id: str) -> None:
        """Soft-delete a credential on explicit user request."""
        await self.db.deactivate_credential(credential_id, updated_at=self.clock())
        logger.info("[CREDENTIALS] Disconnected credential %s", credential_id)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "CredentialManager",
    "DEFAULT_REFRESH_MARGIN",
]
